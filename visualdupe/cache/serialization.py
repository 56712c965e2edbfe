"""
Binary record format for cached feature vectors.

Layout (little-endian):

    uint32   record length (bytes after this field)
    uint16   identity length
    bytes    identity (utf-8)
    float32  histogram x 768
    float32  descriptors x 16000
    uint64   fingerprint
    int32    width
    int32    height

Float values are stored bit-for-bit, so a round trip is exact.
"""

from __future__ import annotations

import struct

import numpy as np

from ..config import HISTOGRAM_SIZE, DESCRIPTOR_LENGTH
from ..errors import CacheError, InvalidFeatureShapeError
from ..models import FeatureVector

_LENGTH = struct.Struct('<I')
_IDENTITY_LENGTH = struct.Struct('<H')
_TRAILER = struct.Struct('<Qii')
_FLOAT32 = np.dtype('<f4')
_ARRAYS_SIZE = (HISTOGRAM_SIZE + DESCRIPTOR_LENGTH) * _FLOAT32.itemsize
_MAX_IDENTITY_BYTES = 0xFFFF


def serialize_features(features: FeatureVector) -> bytes:
    """
    Serialize a FeatureVector into a length-prefixed record.

    Raises:
        CacheError: If the vector cannot be encoded
    """
    try:
        identity = features.identity.encode('utf-8')
    except UnicodeEncodeError as e:
        raise CacheError(f"Identity is not encodable: {e}") from e
    if len(identity) > _MAX_IDENTITY_BYTES:
        raise CacheError(f"Identity of {len(identity)} bytes is too long to cache")

    try:
        body = b''.join((
            _IDENTITY_LENGTH.pack(len(identity)),
            identity,
            features.color_histogram.astype(_FLOAT32, copy=False).tobytes(),
            features.local_descriptors.astype(_FLOAT32, copy=False).tobytes(),
            _TRAILER.pack(features.fingerprint, features.width, features.height),
        ))
    except struct.error as e:
        raise CacheError(f"Cannot encode features for {features.identity}: {e}") from e

    return _LENGTH.pack(len(body)) + body


def deserialize_features(data: bytes) -> FeatureVector:
    """
    Decode a record produced by serialize_features.

    Raises:
        CacheError: If the record is truncated or malformed
    """
    view = memoryview(data)
    try:
        (length,) = _LENGTH.unpack_from(view, 0)
        if length != len(view) - _LENGTH.size:
            raise CacheError(f"Record length {length} does not match payload of {len(view) - _LENGTH.size}")

        offset = _LENGTH.size
        (identity_length,) = _IDENTITY_LENGTH.unpack_from(view, offset)
        offset += _IDENTITY_LENGTH.size
        identity = bytes(view[offset:offset + identity_length]).decode('utf-8')
        offset += identity_length

        if len(view) - offset != _ARRAYS_SIZE + _TRAILER.size:
            raise CacheError("Record payload has the wrong size for a feature vector")

        histogram = np.frombuffer(view, dtype=_FLOAT32, count=HISTOGRAM_SIZE, offset=offset)
        offset += HISTOGRAM_SIZE * _FLOAT32.itemsize
        descriptors = np.frombuffer(view, dtype=_FLOAT32, count=DESCRIPTOR_LENGTH, offset=offset)
        offset += DESCRIPTOR_LENGTH * _FLOAT32.itemsize
        fingerprint, width, height = _TRAILER.unpack_from(view, offset)
    except (struct.error, UnicodeDecodeError, ValueError) as e:
        raise CacheError(f"Corrupt feature record: {e}") from e

    try:
        return FeatureVector(
            identity=identity,
            color_histogram=histogram,
            local_descriptors=descriptors,
            fingerprint=fingerprint,
            width=width,
            height=height,
        )
    except (InvalidFeatureShapeError, ValueError) as e:
        raise CacheError(f"Cached record for {identity} is not a valid feature vector: {e}") from e


__all__ = ['serialize_features', 'deserialize_features']
