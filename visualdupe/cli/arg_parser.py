"""
Argument parsing for the CLI interface.

Provides functions to create and configure the argument parser for the
similar-image scanner.
"""

from __future__ import annotations

import argparse
from pathlib import Path

from ..config import GROUPING_THRESHOLD, INCREMENTAL_THRESHOLD, DEFAULT_WORKERS
from ..utils.exporters import EXPORT_FORMATS


def _threshold(value: str) -> float:
    threshold = float(value)
    if not 0.0 <= threshold <= 1.0:
        raise argparse.ArgumentTypeError(f"threshold must be between 0 and 1, got {value}")
    return threshold


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Options left unset fall back to the user configuration.
    """
    parser = argparse.ArgumentParser(
        prog='visualdupe',
        description='Find visually similar images',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s /path/to/photos
      Scan for similar images and print the groups

  %(prog)s /path/to/photos --threshold 0.9
      Only group near-identical images

  %(prog)s /path/to/photos --export groups.json --export-format json
      Export the groups for external review

  %(prog)s config --init
      Create an example configuration file
        """
    )

    parser.add_argument(
        'directory',
        type=Path,
        help='Directory to scan for images'
    )

    parser.add_argument(
        '-r', '--no-recursive',
        action='store_true',
        help='Do not scan subdirectories'
    )

    parser.add_argument(
        '-t', '--threshold',
        type=_threshold,
        default=None,
        help=f'Fused similarity needed to group two images (0-1). Default: {GROUPING_THRESHOLD}'
    )

    parser.add_argument(
        '--incremental-threshold',
        type=_positive_int,
        default=None,
        help=f'Collections larger than this use small batches. Default: {INCREMENTAL_THRESHOLD}'
    )

    parser.add_argument(
        '--memory-budget',
        type=_positive_int,
        default=None,
        metavar='MB',
        help='Re-split batches whose estimated memory exceeds this many megabytes'
    )

    parser.add_argument(
        '-w', '--workers',
        type=_positive_int,
        default=None,
        help=f'Number of parallel workers. Default: {DEFAULT_WORKERS}'
    )

    parser.add_argument(
        '-e', '--export',
        type=Path,
        help='Export results to file'
    )

    parser.add_argument(
        '--export-format',
        choices=EXPORT_FORMATS,
        default='txt',
        help='Export format. Default: txt'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress output (useful for piping output)'
    )

    return parser


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Examples:
        >>> args = parse_arguments(['/path/to/photos', '--threshold', '0.9'])
        >>> args.threshold
        0.9
    """
    parser = create_parser()
    return parser.parse_args(argv)


__all__ = [
    'create_parser',
    'parse_arguments',
]
