"""
Utilities package for visualdupe.

Provides:
- formatters: Human-readable formatting for numbers, time, sizes and scores
- exporters: Export scan results to files
"""

from __future__ import annotations

from . import formatters
from . import exporters

from .formatters import format_number, format_time_estimate, format_size, format_percentage
from .exporters import export_results, EXPORT_FORMATS

__all__ = [
    # Submodules
    'formatters',
    'exporters',
    # Formatters
    'format_number',
    'format_time_estimate',
    'format_size',
    'format_percentage',
    # Exporters
    'export_results',
    'EXPORT_FORMATS',
]
