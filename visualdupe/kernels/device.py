"""
Compute device abstraction.

ComputeDevice presents the kernels behind a GPU-like contract:

- Kernels are compiled into named pipelines once, at construction. A
  missing or broken kernel makes the whole device unavailable.
- Callers allocate pre-sized, zero-initialized buffers through the device,
  which refuses allocations it cannot back.
- Dispatches go through a single serialized command stream.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping, Optional

import numpy as np
import psutil

from ..config import MAX_TEXTURE_DIMENSION
from ..dependencies import Image
from ..errors import DeviceUnavailableError, DeviceAllocationError
from .histogram import color_histogram
from .descriptors import local_descriptors
from .fingerprint import perceptual_fingerprint
from .similarity import pairwise_similarity

_logger = logging.getLogger(__name__)

KERNEL_COLOR_HISTOGRAM = 'color_histogram'
KERNEL_LOCAL_DESCRIPTORS = 'local_descriptors'
KERNEL_PERCEPTUAL_FINGERPRINT = 'perceptual_fingerprint'
KERNEL_PAIRWISE_SIMILARITY = 'pairwise_similarity'

DEFAULT_KERNELS: dict[str, Callable] = {
    KERNEL_COLOR_HISTOGRAM: color_histogram,
    KERNEL_LOCAL_DESCRIPTORS: local_descriptors,
    KERNEL_PERCEPTUAL_FINGERPRINT: perceptual_fingerprint,
    KERNEL_PAIRWISE_SIMILARITY: pairwise_similarity,
}

# Fraction of currently available system memory a single buffer may claim
_BUFFER_MEMORY_FRACTION = 0.5


class ComputeDevice:
    """
    Array-programming compute device with named kernel pipelines.

    Usage:
        device = ComputeDevice()
        texture = device.upload_texture(pil_image)
        out = device.allocate_buffer((768,))
        device.dispatch('color_histogram', texture, out)
    """

    REQUIRED_KERNELS = (
        KERNEL_COLOR_HISTOGRAM,
        KERNEL_LOCAL_DESCRIPTORS,
        KERNEL_PERCEPTUAL_FINGERPRINT,
        KERNEL_PAIRWISE_SIMILARITY,
    )

    def __init__(
        self,
        name: str = "numpy",
        kernels: Optional[Mapping[str, Callable]] = None,
        max_texture_dimension: int = MAX_TEXTURE_DIMENSION,
        max_buffer_bytes: Optional[int] = None,
    ):
        """
        Initialize the device and compile its pipelines.

        Args:
            name: Device name for logging
            kernels: Kernel table; defaults to DEFAULT_KERNELS
            max_texture_dimension: Largest texture side the device accepts
            max_buffer_bytes: Fixed allocation limit, or None to derive it
                from live available memory

        Raises:
            DeviceUnavailableError: If a required kernel is missing
        """
        self.name = name
        self.max_texture_dimension = max_texture_dimension
        self.max_buffer_bytes = max_buffer_bytes
        self._pipelines = self._compile(DEFAULT_KERNELS if kernels is None else kernels)
        self._command_lock = threading.Lock()
        _logger.debug(f"Compute device '{name}' ready with {len(self._pipelines)} pipelines")

    def _compile(self, kernels: Mapping[str, Callable]) -> dict[str, Callable]:
        pipelines = {}
        for kernel_name in self.REQUIRED_KERNELS:
            kernel = kernels.get(kernel_name)
            if kernel is None or not callable(kernel):
                raise DeviceUnavailableError(
                    f"Device '{self.name}' could not compile kernel '{kernel_name}'"
                )
            pipelines[kernel_name] = kernel
        return pipelines

    def supports(self, kernel_name: str) -> bool:
        return kernel_name in self._pipelines

    def available_memory_bytes(self) -> int:
        """Live available system memory as reported by psutil."""
        return int(psutil.virtual_memory().available)

    def buffer_limit_bytes(self) -> int:
        if self.max_buffer_bytes is not None:
            return self.max_buffer_bytes
        return int(self.available_memory_bytes() * _BUFFER_MEMORY_FRACTION)

    def allocate_buffer(self, shape: tuple, dtype=np.float32) -> np.ndarray:
        """
        Allocate a zero-initialized buffer.

        Raises:
            DeviceAllocationError: If the buffer exceeds the allocation limit
        """
        nbytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
        limit = self.buffer_limit_bytes()
        if nbytes > limit:
            raise DeviceAllocationError(
                f"Buffer of {nbytes:,} bytes exceeds device limit of {limit:,} bytes"
            )
        return np.zeros(shape, dtype=dtype)

    def upload_texture(self, image: 'Image.Image') -> np.ndarray:
        """
        Upload a decoded image as an H x W x 4 float32 RGBA texture in [0, 1].

        Raises:
            DeviceAllocationError: If the image is empty or too large
        """
        width, height = image.size
        if width <= 0 or height <= 0:
            raise DeviceAllocationError(f"Cannot allocate a {width}x{height} texture")
        if max(width, height) > self.max_texture_dimension:
            raise DeviceAllocationError(
                f"Texture {width}x{height} exceeds device limit of {self.max_texture_dimension}"
            )

        rgba = image if image.mode == 'RGBA' else image.convert('RGBA')
        texture = self.allocate_buffer((height, width, 4), dtype=np.float32)
        texture[...] = np.asarray(rgba, dtype=np.float32)
        texture /= 255.0
        return texture

    def dispatch(self, kernel_name: str, *args, **kwargs):
        """Run a compiled kernel on the serialized command stream."""
        pipeline = self._pipelines.get(kernel_name)
        if pipeline is None:
            raise DeviceUnavailableError(f"Kernel '{kernel_name}' is not available on '{self.name}'")
        with self._command_lock:
            return pipeline(*args, **kwargs)

    def __repr__(self) -> str:
        return f"ComputeDevice(name={self.name!r})"


def create_default_device(**kwargs) -> ComputeDevice:
    """Create the default compute device."""
    return ComputeDevice(**kwargs)


__all__ = [
    'ComputeDevice',
    'create_default_device',
    'DEFAULT_KERNELS',
    'KERNEL_COLOR_HISTOGRAM',
    'KERNEL_LOCAL_DESCRIPTORS',
    'KERNEL_PERCEPTUAL_FINGERPRINT',
    'KERNEL_PAIRWISE_SIMILARITY',
]
