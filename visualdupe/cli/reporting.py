"""
Report formatting and display for the CLI interface.
"""

from __future__ import annotations

from ..models import SimilarityResult
from ..utils.formatters import format_number, format_percentage


def _print_section_header(title: str) -> None:
    """Print a section header with divider lines."""
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)


def _print_handle(handle) -> None:
    captured = handle.captured_at.strftime('%Y-%m-%d %H:%M') if handle.captured_at else 'unknown date'
    print(f"  {handle.identity}")
    print(f"      {handle.width}x{handle.height} | {captured}")


def format_progress_line(snapshot: SimilarityResult) -> str:
    """One-line progress summary of a snapshot."""
    progress = snapshot.progress
    return (
        f"Batch {progress.current_batch_index}/{progress.total_batches}: "
        f"{format_number(progress.processed_assets)}/{format_number(progress.total_assets)} images "
        f"({format_percentage(progress.percentage)}), "
        f"{progress.similar_groups_found} groups"
    )


def print_similarity_report(result: SimilarityResult) -> None:
    """
    Print every group of the final snapshot.

    Groups are numbered from 1 in the order the scan found them.
    """
    groups = result.similar_groups
    grouped_images = sum(len(group) for group in groups)

    print("\n" + "=" * 70)
    print("SIMILAR IMAGE REPORT")
    print("=" * 70)

    print(f"\nScanned: {format_number(result.progress.processed_assets)} images")
    print(f"Similar images found: {format_number(grouped_images)} in {len(groups)} groups")

    if groups:
        _print_section_header("SIMILAR GROUPS")
        for i, group in enumerate(groups, 1):
            print(f"\nGroup {i} ({len(group)} images):")
            for handle in group:
                _print_handle(handle)

    print("\n" + "=" * 70)


__all__ = ['print_similarity_report', 'format_progress_line']
