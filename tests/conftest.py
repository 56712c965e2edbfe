"""
Pytest configuration and shared fixtures for test suite.
"""

import io
import shutil
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from visualdupe.cache import FeatureCache
from visualdupe.config import DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE, HISTOGRAM_SIZE
from visualdupe.extractor import FeatureExtractor
from visualdupe.kernels import ComputeDevice
from visualdupe.models import FeatureVector, ImageAsset
from visualdupe.orchestrator import create_engine
from visualdupe.scheduler import BatchScheduler, DeviceCapabilities
from visualdupe.sources import MemoryPixelSource
from visualdupe.user_config import get_user_config


FIXED_CAPABILITIES = DeviceCapabilities(available_memory_mb=8000, is_high_end=True)


def png_bytes(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, 'PNG')
    return buffer.getvalue()


def checkerboard_image(size: int = 64, square: int = 8) -> Image.Image:
    """Black and white checkerboard: strong edges, plenty of descriptors."""
    cells = (np.indices((size, size)) // square).sum(axis=0) % 2
    plane = (cells * 255).astype(np.uint8)
    return Image.fromarray(np.stack([plane] * 3, axis=-1))


def noise_image(size: int = 64, seed: int = 0) -> Image.Image:
    rng = np.random.default_rng(seed)
    return Image.fromarray(rng.integers(0, 256, (size, size, 3), dtype=np.uint8))


class BlockingPixelSource(MemoryPixelSource):
    """
    MemoryPixelSource that holds loads of selected identities until released.
    """

    def __init__(self, payloads, blocked=None):
        super().__init__(payloads)
        self.blocked = set(blocked) if blocked is not None else None
        self.gate = threading.Event()
        self.entered = threading.Event()

    def load_pixels(self, handle):
        if self.blocked is None or handle.identity in self.blocked:
            self.entered.set()
            self.gate.wait(timeout=10)
        return super().load_pixels(handle)


@pytest.fixture(autouse=True)
def isolated_user_config(monkeypatch, tmp_path):
    """Point the user configuration at an empty directory."""
    monkeypatch.setenv("VISUALDUPE_CONFIG_DIR", str(tmp_path / "config"))
    get_user_config().reload()
    yield get_user_config()
    get_user_config().reload()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def device():
    return ComputeDevice()


@pytest.fixture
def cache():
    return FeatureCache()


@pytest.fixture
def scheduler():
    """Scheduler with fixed, high-end device signals."""
    return BatchScheduler(capabilities_provider=lambda: FIXED_CAPABILITIES)


@pytest.fixture
def abc_payloads():
    """
    Encoded images for the classic scenario:
    A and B are pixel-identical, C is unrelated noise.
    """
    board = png_bytes(checkerboard_image())
    return {
        'A': board,
        'B': board,
        'C': png_bytes(noise_image(seed=7)),
    }


@pytest.fixture
def abc_handles():
    base = datetime(2024, 1, 1, 12, 0, 0)
    return [
        ImageAsset('A', 64, 64, captured_at=base),
        ImageAsset('B', 64, 64, captured_at=base + timedelta(seconds=1)),
        ImageAsset('C', 64, 64, captured_at=base + timedelta(seconds=2)),
    ]


@pytest.fixture
def noise_collection():
    """60 small, mutually unrelated images with handles and payloads."""
    handles = []
    payloads = {}
    for i in range(60):
        identity = f"noise-{i:03d}"
        handles.append(ImageAsset(identity, 16, 16))
        payloads[identity] = png_bytes(noise_image(size=16, seed=100 + i))
    return handles, payloads


@pytest.fixture
def extractor(device, cache, abc_payloads):
    return FeatureExtractor(device, cache, MemoryPixelSource(abc_payloads), max_workers=2)


@pytest.fixture
def make_engine(device):
    """Factory for isolated engines over a given pixel source."""
    def factory(pixel_source, **kwargs):
        kwargs.setdefault('capabilities_provider', lambda: FIXED_CAPABILITIES)
        kwargs.setdefault('max_workers', 2)
        kwargs.setdefault('device', device)
        return create_engine(pixel_source=pixel_source, **kwargs)
    return factory


@pytest.fixture
def feature_factory():
    """Build synthetic FeatureVectors from a seed."""
    def factory(identity, seed=0, valid_slots=40, fingerprint=None):
        rng = np.random.default_rng(seed)
        histogram = rng.integers(0, 50, HISTOGRAM_SIZE).astype(np.float32)
        descriptors = np.zeros((DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE), dtype=np.float32)
        descriptors[:valid_slots] = rng.random((valid_slots, DESCRIPTOR_SIZE), dtype=np.float32)
        if fingerprint is None:
            fingerprint = (int(rng.integers(0, 2**32)) << 32) | int(rng.integers(0, 2**32))
        return FeatureVector(
            identity=identity,
            color_histogram=histogram,
            local_descriptors=descriptors.reshape(-1),
            fingerprint=fingerprint,
            width=64,
            height=48,
        )
    return factory
