"""
Exception hierarchy for visualdupe.

Every error raised by the engine derives from VisualDupeError so hosts can
catch the whole family in one place.
"""

from __future__ import annotations

from typing import Optional


class VisualDupeError(Exception):
    """Base class for all engine errors."""


class AlreadyRunningError(VisualDupeError):
    """A scan was requested while another scan is still running."""

    def __init__(self, message: str = "Another scan is already in progress"):
        super().__init__(message)


class DeviceUnavailableError(VisualDupeError):
    """The compute device is missing or could not compile its kernels."""


class DeviceAllocationError(VisualDupeError):
    """The compute device refused a buffer or texture allocation."""


class ExtractionFailedError(VisualDupeError):
    """
    Feature extraction failed for a single image.

    Attributes:
        identity: Identity of the image that failed
        reason: Human-readable failure description
    """

    def __init__(self, identity: str, reason: str, cause: Optional[BaseException] = None):
        self.identity = identity
        self.reason = reason
        self.cause = cause
        super().__init__(f"Feature extraction failed for {identity}: {reason}")


class InvalidFeatureShapeError(VisualDupeError, ValueError):
    """A feature vector or kernel buffer does not have the fixed length."""


class CacheError(VisualDupeError):
    """A cache record could not be serialized or deserialized."""


__all__ = [
    'VisualDupeError',
    'AlreadyRunningError',
    'DeviceUnavailableError',
    'DeviceAllocationError',
    'ExtractionFailedError',
    'InvalidFeatureShapeError',
    'CacheError',
]
