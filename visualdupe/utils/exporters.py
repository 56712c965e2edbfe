"""
Export functionality for visualdupe.

Writes the groups of a scan snapshot to TXT, CSV or JSON.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import TextIO

from ..models import SimilarityResult

EXPORT_FORMATS = ('txt', 'csv', 'json')


def _handle_fields(handle) -> dict:
    captured = handle.captured_at
    return {
        'identity': handle.identity,
        'width': handle.width,
        'height': handle.height,
        'captured_at': captured.isoformat() if captured else '',
        'media_kind': handle.media_kind,
    }


def _export_txt(result: SimilarityResult, file_handle: TextIO) -> None:
    file_handle.write("SIMILAR IMAGE REPORT\n")
    file_handle.write("=" * 70 + "\n")
    for i, group in enumerate(result.similar_groups, 1):
        file_handle.write(f"\nGroup {i} ({len(group)} images):\n")
        for handle in group:
            file_handle.write(f"  {handle.identity}\n")


def _export_csv(result: SimilarityResult, file_handle: TextIO) -> None:
    """CSV columns: group_id, identity, width, height, captured_at, media_kind."""
    writer = csv.writer(file_handle)
    writer.writerow(['group_id', 'identity', 'width', 'height', 'captured_at', 'media_kind'])
    for i, group in enumerate(result.similar_groups, 1):
        for handle in group:
            fields = _handle_fields(handle)
            writer.writerow([
                i,
                fields['identity'],
                fields['width'],
                fields['height'],
                fields['captured_at'],
                fields['media_kind'],
            ])


def _export_json(result: SimilarityResult, file_handle: TextIO) -> None:
    payload = {
        'progress': result.progress.to_dict(),
        'is_complete': result.is_complete,
        'groups': [
            [_handle_fields(handle) for handle in group]
            for group in result.similar_groups
        ],
    }
    json.dump(payload, file_handle, indent=2)


def export_results(result: SimilarityResult, output_path: Path, export_format: str = 'txt') -> None:
    """
    Export the groups of a snapshot to a file.

    Raises:
        ValueError: If export_format is not supported
        OSError: If the file cannot be written
    """
    if export_format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {export_format}. Use one of {', '.join(EXPORT_FORMATS)}.")

    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        if export_format == 'txt':
            _export_txt(result, f)
        elif export_format == 'csv':
            _export_csv(result, f)
        else:
            _export_json(result, f)


__all__ = ['export_results', 'EXPORT_FORMATS']
