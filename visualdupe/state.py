"""
Run state for a ScanEngine.

Tracks the single in-flight scan: its status, counters and terminal
outcome. All transitions happen under one lock so "is a scan running" has a
single owner.
"""

import threading
from typing import Callable, Optional

STATUS_IDLE = 'idle'
STATUS_RUNNING = 'running'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_FAILED = 'failed'

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_FAILED)


class ScanState:
    """
    State machine over one scan at a time.

    Idle -> Running -> Completed | Cancelled | Failed -> Idle
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False
        self.last_outcome: Optional[str] = None
        self.reset()

    def reset(self):
        """Reset counters for a new scan."""
        self.total_assets = 0
        self.processed_assets = 0
        self.total_batches = 0
        self.current_batch = 0
        self.groups_found = 0
        self.error: Optional[BaseException] = None

    def try_begin(self, total_assets: int = 0, total_batches: int = 0,
                  on_begin: Optional[Callable[[], None]] = None) -> bool:
        """
        Move Idle -> Running.

        Args:
            on_begin: Called under the state lock just before the scan is
                marked running, only if the transition happens

        Returns:
            False (and changes nothing) if a scan is already running
        """
        with self._lock:
            if self._running:
                return False
            if on_begin is not None:
                on_begin()
            self._running = True
            self.reset()
            self.total_assets = total_assets
            self.total_batches = total_batches
            return True

    def plan(self, total_assets: int, total_batches: int):
        with self._lock:
            self.total_assets = total_assets
            self.total_batches = total_batches

    def record_batch(self, batch_index: int, processed_assets: int, groups_found: int):
        with self._lock:
            self.current_batch = batch_index
            self.processed_assets = processed_assets
            self.groups_found = groups_found

    def finish(self, outcome: str, error: Optional[BaseException] = None):
        """Record the terminal outcome and return to Idle."""
        if outcome not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {outcome}")
        with self._lock:
            self.last_outcome = outcome
            self.error = error
            self._running = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def status(self) -> str:
        """Current status; 'running' while a scan is in flight, else 'idle'."""
        with self._lock:
            return STATUS_RUNNING if self._running else STATUS_IDLE

    def to_status_dict(self) -> dict:
        with self._lock:
            return {
                'status': STATUS_RUNNING if self._running else STATUS_IDLE,
                'last_outcome': self.last_outcome,
                'total': self.total_assets,
                'processed': self.processed_assets,
                'batch_index': self.current_batch,
                'total_batches': self.total_batches,
                'groups_found': self.groups_found,
                'error': str(self.error) if self.error else None,
            }
