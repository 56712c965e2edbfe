"""
Image sources for visualdupe.

The engine never touches storage directly. It receives ImageHandle objects
from an asset store and resolves them to encoded bytes through a
PixelSource. This module provides:
- PixelSource: Protocol the extractor calls
- FilePixelSource: Reads handles backed by files on disk
- MemoryPixelSource: Serves encoded bytes held in memory (tests, embedding)
- find_image_files / asset_from_path / load_assets: File-backed asset store
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .config import IMAGE_EXTENSIONS
from .dependencies import Image, HAS_HEIF_SUPPORT
from .models import ImageAsset, ImageHandle, MEDIA_IMAGE

_logger = logging.getLogger(__name__)

# EXIF tags holding the capture time
_EXIF_IFD = 0x8769
_TAG_DATETIME_ORIGINAL = 36867
_TAG_DATETIME = 306
_EXIF_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'


@runtime_checkable
class PixelSource(Protocol):
    """Resolves an image handle to its encoded image bytes."""

    def load_pixels(self, handle: ImageHandle) -> bytes:
        ...


class FilePixelSource:
    """
    Loads handles whose bytes live on disk.

    Uses the handle's ``path`` attribute when it has one, otherwise treats
    the identity as a path.
    """

    def load_pixels(self, handle: ImageHandle) -> bytes:
        path = getattr(handle, 'path', None) or handle.identity
        with open(path, 'rb') as f:
            return f.read()


class MemoryPixelSource:
    """Serves encoded image bytes registered by identity."""

    def __init__(self, payloads: Optional[dict[str, bytes]] = None):
        self._payloads: dict[str, bytes] = dict(payloads or {})
        self._lock = threading.Lock()

    def add(self, identity: str, data: bytes) -> None:
        with self._lock:
            self._payloads[identity] = data

    def remove(self, identity: str) -> None:
        with self._lock:
            self._payloads.pop(identity, None)

    def load_pixels(self, handle: ImageHandle) -> bytes:
        with self._lock:
            data = self._payloads.get(handle.identity)
        if data is None:
            raise KeyError(f"No pixel data registered for {handle.identity}")
        return data

    def __len__(self) -> int:
        with self._lock:
            return len(self._payloads)


def find_image_files(root_path: str | Path, recursive: bool = True) -> list[str]:
    """
    Find all image files in the given directory.

    Args:
        root_path: Directory path to search for images
        recursive: If True, search subdirectories recursively

    Returns:
        Sorted list of absolute file paths as strings

    Notes:
        - Filters out HEIC/HEIF files if pillow-heif is not installed
        - Deduplicates files reached through more than one path
    """
    root = Path(root_path)

    extensions_to_scan = IMAGE_EXTENSIONS
    if not HAS_HEIF_SUPPORT:
        extensions_to_scan = {ext for ext in IMAGE_EXTENSIONS if ext not in {'.heic', '.heif'}}

    images = []
    seen = set()

    iterator = root.rglob('*') if recursive else root.glob('*')

    for filepath in iterator:
        if filepath.is_file() and filepath.suffix.lower() in extensions_to_scan:
            resolved = str(filepath.resolve())
            if resolved not in seen:
                seen.add(resolved)
                images.append(resolved)

    return sorted(images)


def _parse_exif_date(value) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip('\x00 '), _EXIF_DATE_FORMAT)
    except ValueError:
        return None


def read_capture_time(img: 'Image.Image') -> Optional[datetime]:
    """Capture timestamp from EXIF, preferring DateTimeOriginal."""
    exif = img.getexif()
    if not exif:
        return None
    captured = _parse_exif_date(exif.get_ifd(_EXIF_IFD).get(_TAG_DATETIME_ORIGINAL))
    if captured is None:
        captured = _parse_exif_date(exif.get(_TAG_DATETIME))
    return captured


def asset_from_path(filepath: str | Path) -> ImageAsset:
    """
    Build an ImageAsset from an image file header.

    The capture time comes from EXIF when present, else the file's
    modification time.

    Raises:
        OSError: If the file is missing or is not a readable image
    """
    filepath = str(Path(filepath).resolve())
    with Image.open(filepath) as img:
        width, height = img.size
        captured_at = read_capture_time(img)

    if captured_at is None:
        captured_at = datetime.fromtimestamp(os.path.getmtime(filepath))

    return ImageAsset(
        identity=filepath,
        width=width,
        height=height,
        captured_at=captured_at,
        media_kind=MEDIA_IMAGE,
        path=filepath,
    )


def load_assets(root_path: str | Path, recursive: bool = True) -> tuple[list[ImageAsset], list[str]]:
    """
    Discover images under a directory and read their headers.

    Returns:
        Tuple of (assets, paths that could not be opened)
    """
    assets: list[ImageAsset] = []
    unreadable: list[str] = []

    for path in find_image_files(root_path, recursive):
        try:
            assets.append(asset_from_path(path))
        except (OSError, Image.UnidentifiedImageError) as e:
            _logger.warning(f"Skipping unreadable image {path}: {e}")
            unreadable.append(path)

    _logger.info(f"Found {len(assets):,} images under {root_path}")
    return assets, unreadable


__all__ = [
    'PixelSource',
    'FilePixelSource',
    'MemoryPixelSource',
    'find_image_files',
    'read_capture_time',
    'asset_from_path',
    'load_assets',
]
