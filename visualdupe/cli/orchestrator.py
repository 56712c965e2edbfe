"""
CLI workflow orchestration for visualdupe.

Provides the CLIOrchestrator class that coordinates the CLI workflow from
argument parsing through final reporting.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..dependencies import HAS_TQDM, _tqdm_class
from ..errors import VisualDupeError
from ..models import SimilarityResult
from ..orchestrator import ScanEngine, create_engine
from ..sources import FilePixelSource, load_assets
from ..utils.exporters import export_results
from ..utils.formatters import format_time_estimate
from .arg_parser import parse_arguments
from .reporting import print_similarity_report, format_progress_line


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure logging for the CLI.

    Args:
        verbose: Enable verbose (DEBUG level) logging

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    return logging.getLogger(__name__)


class CLIOrchestrator:
    """
    Orchestrates the CLI scanning workflow.

    Phases: setup, validation, discovery, estimate, scan, report.
    """

    def __init__(self, argv=None):
        self.argv = argv
        self.logger: Optional[logging.Logger] = None
        self.args = None
        self.assets = []
        self.engine: Optional[ScanEngine] = None
        self.result: Optional[SimilarityResult] = None
        self.show_progress = True

    def run(self) -> int:
        """
        Execute the complete CLI workflow.

        Returns:
            Exit code (0 for success, 1 for error, 130 when interrupted)
        """
        self._setup_phase()

        exit_code = self._validate_phase()
        if exit_code != 0:
            return exit_code

        exit_code = self._discover_phase()
        if exit_code != 0:
            return exit_code

        self._estimate_phase()

        exit_code = self._scan_phase()
        if exit_code != 0:
            return exit_code

        return self._report_phase()

    def _setup_phase(self) -> None:
        """Parse arguments and set up logging."""
        self.args = parse_arguments(self.argv)
        self.logger = setup_logging(self.args.verbose)
        self.show_progress = not self.args.no_progress

    def _validate_phase(self) -> int:
        if not self.args.directory.is_dir():
            self.logger.error(f"Directory not found: {self.args.directory}")
            return 1
        return 0

    def _discover_phase(self) -> int:
        """Find images and read their headers."""
        self.logger.info(f"Scanning {self.args.directory} for images...")
        self.assets, unreadable = load_assets(self.args.directory, recursive=not self.args.no_recursive)

        if unreadable:
            self.logger.warning(f"Could not read {len(unreadable):,} files")

        if not self.assets:
            self.logger.info("No images found. Exiting.")
            return 1
        return 0

    def _estimate_phase(self) -> None:
        """Build the engine and log a rough time estimate."""
        memory_budget = self.args.memory_budget * 1024 * 1024 if self.args.memory_budget else None
        self.engine = create_engine(
            pixel_source=FilePixelSource(),
            max_workers=self.args.workers,
            grouping_threshold=self.args.threshold,
            incremental_threshold=self.args.incremental_threshold,
            memory_budget=memory_budget,
        )

        report = self.engine.scheduler.analyze_complexity(self.assets)
        self.logger.info(
            f"{report.image_count:,} images, {report.high_resolution_count:,} high resolution, "
            f"estimated {format_time_estimate(report.estimated_processing_seconds)}"
        )

    def _scan_phase(self) -> int:
        """Run the scan, showing progress per batch."""
        stream = self.engine.start(self.assets)

        pbar: Optional[Any] = None
        if HAS_TQDM and self.show_progress and _tqdm_class is not None:
            pbar = _tqdm_class(total=len(self.assets), desc="Scanning", unit="img", ncols=80)

        processed = 0
        try:
            for snapshot in stream:
                self.result = snapshot
                if pbar is not None:
                    pbar.update(snapshot.progress.processed_assets - processed)
                elif self.show_progress:
                    self.logger.info(format_progress_line(snapshot))
                processed = snapshot.progress.processed_assets
        except KeyboardInterrupt:
            self.engine.cancel()
            self.engine.wait()
            self.logger.info("Scan cancelled.")
            return 130
        except VisualDupeError as e:
            self.logger.error(f"Scan failed: {e}")
            return 1
        finally:
            if pbar is not None:
                pbar.close()

        return 0

    def _report_phase(self) -> int:
        """Print the report and handle exports."""
        print_similarity_report(self.result)

        if self.args.export:
            try:
                export_results(self.result, self.args.export, self.args.export_format)
            except OSError as e:
                self.logger.error(f"Could not export results: {e}")
                return 1
            self.logger.info(f"Results exported to: {self.args.export}")

        return 0


__all__ = ['CLIOrchestrator', 'setup_logging']
