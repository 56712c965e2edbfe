"""
Scan orchestration for visualdupe.

ScanEngine drives one scan at a time through the batch loop:

    schedule -> (check cancel -> extract -> matrix -> cluster -> emit)*

Each batch produces an immutable SimilarityResult snapshot holding every
group found so far. Snapshots reach the host through a ScanStream and,
optionally, callbacks registered when the scan starts. A scan ends in
exactly one of completed, cancelled or failed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Iterator, Optional, Sequence

from .cache import FeatureCache
from .config import GROUPING_THRESHOLD
from .errors import AlreadyRunningError
from .extractor import FeatureExtractor
from .kernels import ComputeDevice, create_default_device
from .models import ImageHandle, ScanProgress, SimilarityResult
from .scheduler import BatchScheduler, DeviceCapabilities
from .similarity import SimilarityEngine, clusters_to_groups
from .sources import PixelSource
from .state import (
    ScanState,
    STATUS_RUNNING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_FAILED,
)
from .user_config import get_user_config

_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SimilarityResult], None]
ErrorCallback = Callable[[BaseException], None]


class ScanStream:
    """
    Ordered stream of snapshots for one scan.

    Iterating blocks until the next snapshot arrives and stops once the
    scan has ended. If the scan failed, iteration raises its error after
    the last emitted snapshot. Any number of iterators may consume the
    same stream; each sees every snapshot.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._snapshots: list[SimilarityResult] = []
        self._status = STATUS_RUNNING
        self._error: Optional[BaseException] = None
        self._finished = False

    def _emit(self, snapshot: SimilarityResult) -> None:
        with self._condition:
            self._snapshots.append(snapshot)
            self._condition.notify_all()

    def _finish(self, status: str, error: Optional[BaseException] = None) -> None:
        with self._condition:
            self._status = status
            self._error = error
            self._finished = True
            self._condition.notify_all()

    def __iter__(self) -> Iterator[SimilarityResult]:
        index = 0
        while True:
            with self._condition:
                while index >= len(self._snapshots) and not self._finished:
                    self._condition.wait()
                if index < len(self._snapshots):
                    snapshot = self._snapshots[index]
                elif self._error is not None:
                    raise self._error
                else:
                    return
            index += 1
            yield snapshot

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the scan ends. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(lambda: self._finished, timeout)

    @property
    def status(self) -> str:
        """'running' until the scan ends, then its terminal status."""
        with self._condition:
            return self._status

    @property
    def error(self) -> Optional[BaseException]:
        with self._condition:
            return self._error

    @property
    def done(self) -> bool:
        with self._condition:
            return self._finished

    @property
    def snapshots(self) -> tuple[SimilarityResult, ...]:
        """Snapshots emitted so far."""
        with self._condition:
            return tuple(self._snapshots)

    @property
    def latest(self) -> Optional[SimilarityResult]:
        with self._condition:
            return self._snapshots[-1] if self._snapshots else None


class ScanEngine:
    """
    Runs similarity scans over image sets.

    One engine owns its cache, scheduler and run state; nothing is shared
    between engines. Build one with create_engine().

    Usage:
        engine = create_engine(pixel_source=FilePixelSource())
        stream = engine.start(assets)
        for snapshot in stream:
            render(snapshot)
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        similarity: SimilarityEngine,
        scheduler: BatchScheduler,
        grouping_threshold: float = GROUPING_THRESHOLD,
        memory_budget: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            extractor: Feature extractor (its cache is the engine's cache)
            similarity: Similarity engine used for matrices and clustering
            scheduler: Batch scheduler; also holds the cancellation flag
            grouping_threshold: Fused score at which images are grouped
            memory_budget: Per-batch memory budget for re-splitting, or None
        """
        self.extractor = extractor
        self.similarity = similarity
        self.scheduler = scheduler
        self.grouping_threshold = grouping_threshold
        self.memory_budget = memory_budget

        self._state = ScanState()
        self._processed: set[str] = set()
        self._processed_lock = threading.Lock()
        self._library_generation = 0
        self._thread: Optional[threading.Thread] = None
        self._stream: Optional[ScanStream] = None

    @property
    def cache(self) -> FeatureCache:
        return self.extractor.cache

    @property
    def state(self) -> ScanState:
        return self._state

    def is_running(self) -> bool:
        return self._state.is_running

    def processed_identities(self) -> frozenset[str]:
        """Identities covered by completed batches, used by incremental scans."""
        with self._processed_lock:
            return frozenset(self._processed)

    def _schedule(self, images: list[ImageHandle], incremental: bool) -> list[list[ImageHandle]]:
        if incremental:
            batches = self.scheduler.make_incremental_batches(images, self.processed_identities())
        else:
            batches = self.scheduler.make_batches(images)
        if self.memory_budget is not None:
            batches = self.scheduler.optimize_batches_for_memory(batches, self.memory_budget)
        return batches

    def start(
        self,
        images: Iterable[ImageHandle],
        incremental: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ScanStream:
        """
        Start a scan on a background thread.

        Args:
            images: Image handles to scan
            incremental: Skip images already covered by earlier scans
            on_progress: Called with every snapshot except the final one
            on_complete: Called once with the final snapshot
            on_error: Called once with the error if the scan fails

        Returns:
            ScanStream of this scan's snapshots

        Raises:
            AlreadyRunningError: If a scan is in progress; the running scan
                is left untouched
        """
        images = list(images)
        # The flag is cleared before the scan becomes visible as running,
        # so a cancel() from then on is never lost
        began = self._state.try_begin(
            total_assets=len(images),
            on_begin=self.scheduler.reset_cancellation,
        )
        if not began:
            raise AlreadyRunningError()

        try:
            batches = self._schedule(images, incremental)
        except Exception as e:
            self._state.finish(STATUS_FAILED, e)
            raise

        total = sum(len(batch) for batch in batches)
        self._state.plan(total, len(batches))

        stream = ScanStream()
        self._stream = stream
        self._thread = threading.Thread(
            target=self._run,
            args=(stream, batches, total, on_progress, on_complete, on_error),
            name="visualdupe-scan",
            daemon=True,
        )
        _logger.info(f"Starting scan of {total:,} images in {len(batches)} batches")
        self._thread.start()
        return stream

    def _process_batch(self, batch: Sequence[ImageHandle]) -> list[tuple]:
        features = self.extractor.extract(batch)
        matrix = self.similarity.similarities(features)
        clusters = self.similarity.clusters(matrix, self.grouping_threshold)
        return clusters_to_groups(clusters, batch)

    def _execute(
        self,
        stream: ScanStream,
        batches: list[list[ImageHandle]],
        total: int,
        on_progress: Optional[ProgressCallback],
    ) -> tuple[str, Optional[SimilarityResult]]:
        if not batches:
            snapshot = SimilarityResult(
                similar_groups=(),
                progress=ScanProgress(total, 0, 0, 0, 0),
                is_complete=True,
            )
            stream._emit(snapshot)
            return STATUS_COMPLETED, snapshot

        groups: list[tuple] = []
        processed = 0
        snapshot: Optional[SimilarityResult] = None

        for index, batch in enumerate(batches):
            if self.scheduler.is_cancelled:
                return STATUS_CANCELLED, snapshot

            start_time = time.time()
            with self._processed_lock:
                generation = self._library_generation
            batch_groups = self._process_batch(batch)

            # A batch that finished after cancel() is dropped
            if self.scheduler.is_cancelled:
                return STATUS_CANCELLED, snapshot

            groups.extend(batch_groups)
            processed += len(batch)
            with self._processed_lock:
                # Images read before library_changed() still need a rescan
                if generation == self._library_generation:
                    self._processed.update(handle.identity for handle in batch)

            is_last = index == len(batches) - 1
            snapshot = SimilarityResult(
                similar_groups=tuple(groups),
                progress=ScanProgress(
                    total_assets=total,
                    processed_assets=processed,
                    current_batch_index=index + 1,
                    total_batches=len(batches),
                    similar_groups_found=len(groups),
                ),
                is_complete=is_last,
            )
            self._state.record_batch(index + 1, processed, len(groups))
            stream._emit(snapshot)
            _logger.debug(
                f"Batch {index + 1}/{len(batches)}: {len(batch)} images, "
                f"{len(batch_groups)} groups in {time.time() - start_time:.2f}s"
            )

            if not is_last and on_progress is not None:
                on_progress(snapshot)

        return STATUS_COMPLETED, snapshot

    def _run(
        self,
        stream: ScanStream,
        batches: list[list[ImageHandle]],
        total: int,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[ProgressCallback],
        on_error: Optional[ErrorCallback],
    ) -> None:
        error: Optional[BaseException] = None
        try:
            outcome, snapshot = self._execute(stream, batches, total, on_progress)
        except Exception as e:
            _logger.exception(f"Scan failed: {e}")
            outcome, snapshot, error = STATUS_FAILED, None, e

        self._state.finish(outcome, error)
        stream._finish(outcome, error)

        if outcome == STATUS_COMPLETED:
            groups = snapshot.group_count if snapshot else 0
            _logger.info(f"Scan complete: {groups} similar groups")
            if on_complete is not None:
                self._notify(on_complete, snapshot)
        elif outcome == STATUS_FAILED:
            if on_error is not None:
                self._notify(on_error, error)
        else:
            _logger.info("Scan cancelled")

    @staticmethod
    def _notify(callback: Callable, payload) -> None:
        try:
            callback(payload)
        except Exception:
            _logger.exception("Scan notification callback raised")

    def cancel(self) -> None:
        """Abandon the remaining batches of the running scan."""
        if self._state.is_running:
            _logger.info("Cancellation requested")
            self.scheduler.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the current scan to finish.

        Returns:
            True if no scan is running when the call returns
        """
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def scan(self, images: Iterable[ImageHandle], incremental: bool = False) -> list[SimilarityResult]:
        """
        Run a scan to completion and return all of its snapshots.

        Raises:
            AlreadyRunningError: If a scan is in progress
            VisualDupeError: The scan's error if it failed
        """
        stream = self.start(images, incremental=incremental)
        return list(stream)

    def clear_cache(self) -> None:
        """Drop all cached feature vectors and pairwise metrics."""
        self.cache.clear()
        self.similarity.clear_pairwise_cache()

    def library_changed(self) -> None:
        """
        Signal that the upstream image set changed.

        Invalidates the cache wholesale and forgets which images incremental
        scans have already covered. Features and batches a running scan
        finishes afterwards are not recorded in either.
        """
        with self._processed_lock:
            self._library_generation += 1
            self._processed.clear()
        self.cache.invalidate_all("library changed")
        self.similarity.clear_pairwise_cache()

    def status(self) -> dict:
        return self._state.to_status_dict()


def create_engine(
    device: Optional[ComputeDevice] = None,
    pixel_source: Optional[PixelSource] = None,
    cache: Optional[FeatureCache] = None,
    capabilities_provider: Optional[Callable[[], DeviceCapabilities]] = None,
    max_workers: Optional[int] = None,
    max_concurrent: Optional[int] = None,
    grouping_threshold: Optional[float] = None,
    incremental_threshold: Optional[int] = None,
    memory_budget: Optional[int] = None,
    show_progress: bool = False,
) -> ScanEngine:
    """
    Build a ScanEngine with its own device, cache and scheduler.

    Arguments left as None come from the user configuration.

    Raises:
        DeviceUnavailableError: If the compute device cannot compile its kernels
    """
    user_config = get_user_config()
    workers = max_workers if max_workers is not None else user_config.workers

    if device is None:
        device = create_default_device(max_texture_dimension=user_config.max_texture_dimension)
    if cache is None:
        cache = FeatureCache(user_config.cache_max_entries, user_config.cache_max_bytes)

    extractor = FeatureExtractor(
        device,
        cache=cache,
        pixel_source=pixel_source,
        max_concurrent=max_concurrent if max_concurrent is not None else user_config.device_concurrency,
        max_workers=workers,
        show_progress=show_progress,
    )
    scheduler = BatchScheduler(
        capabilities_provider=capabilities_provider,
        incremental_threshold=(
            incremental_threshold if incremental_threshold is not None
            else user_config.incremental_threshold
        ),
    )

    return ScanEngine(
        extractor=extractor,
        similarity=SimilarityEngine(device, max_workers=workers),
        scheduler=scheduler,
        grouping_threshold=grouping_threshold if grouping_threshold is not None else user_config.grouping_threshold,
        memory_budget=memory_budget if memory_budget is not None else user_config.memory_budget,
    )


__all__ = ['ScanEngine', 'ScanStream', 'create_engine']
