"""
Bounded, resumable import batches.

run_batch() asks the CoverageAuditor what is still missing, feeds those
WorkUnits to a thread pool, and stops when the list is exhausted or the unit
or time budget is reached. Persistence happens per WorkUnit, so stopping at
any point leaves no half-written unit behind; the next run picks up
whatever is still pending.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from .coverage import CoverageAuditor
from .models import BatchResult, ImportOutcome, WorkUnit
from .orchestrator import FetchOrchestrator
from .rate_limit import ImportCancelled
from .store import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """Thread-safe counters for a running batch."""

    def __init__(self, total_units: int):
        self.total = total_units
        self.completed = 0
        self.gapped = 0
        self.lock = threading.Lock()
        self.start_time = time.time()

    def update(self, outcome: ImportOutcome):
        with self.lock:
            if outcome.gapped:
                self.gapped += 1
            else:
                self.completed += 1

    def get_stats(self) -> dict:
        with self.lock:
            elapsed = time.time() - self.start_time
            done = self.completed + self.gapped
            rate = done / elapsed if elapsed > 0 else 0
            remaining = (self.total - done) / rate if rate > 0 else 0
            return {
                "completed": self.completed,
                "gapped": self.gapped,
                "total": self.total,
                "elapsed": elapsed,
                "rate": rate,
                "remaining": remaining,
            }


# =============================================================================
# Scheduler
# =============================================================================

class BatchScheduler:
    """Runs pending WorkUnits through the orchestrator under a budget."""

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        auditor: CoverageAuditor,
        max_workers: int = DEFAULT_WORKERS,
        on_outcome: Optional[Callable[[ImportOutcome, ProgressTracker], None]] = None,
    ):
        self.orchestrator = orchestrator
        self.auditor = auditor
        self.max_workers = max(1, max_workers)
        self.on_outcome = on_outcome
        self.cancel_event = threading.Event()

    def cancel(self):
        """Operator abort: wake limiter waits and stop dequeuing."""
        logger.info("Cancellation requested")
        self.cancel_event.set()

    def run_batch(self, max_units: Optional[int] = None, max_seconds: Optional[float] = None) -> BatchResult:
        """
        Process pending WorkUnits until done or the budget is spent.

        Raises:
            StoreUnavailableError: if the verse store cannot be reached
        """
        self.cancel_event.clear()
        result = BatchResult()
        start = time.time()

        pending = self.auditor.all_pending_work_units()
        units = pending[:max(max_units, 0)] if max_units is not None else pending
        result.remaining = len(pending) - len(units)
        logger.info(
            f"Batch: {len(pending):,} pending units, processing up to {len(units):,} "
            f"with {self.max_workers} workers"
        )

        timer = None
        if max_seconds is not None:
            timer = threading.Timer(max_seconds, self._deadline_reached)
            timer.daemon = True
            timer.start()

        progress = ProgressTracker(len(units))
        fatal: Optional[StoreUnavailableError] = None
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(self._run_unit, unit): unit for unit in units}
                try:
                    for future in as_completed(futures):
                        try:
                            outcome = future.result()
                        except StoreUnavailableError as e:
                            if fatal is None:
                                fatal = e
                                self.cancel_event.set()
                            result.remaining += 1
                            continue
                        except Exception as e:
                            logger.exception(f"{futures[future]}: unexpected error: {e}")
                            result.remaining += 1
                            continue

                        if outcome is None:
                            result.remaining += 1
                            continue

                        result.add(outcome)
                        progress.update(outcome)
                        if self.on_outcome:
                            self.on_outcome(outcome, progress)
                except KeyboardInterrupt:
                    # Queued units see the event and return at once; running ones finish persisting.
                    self.cancel_event.set()
                    raise
        finally:
            if timer is not None:
                timer.cancel()

        result.cancelled = self.cancel_event.is_set()
        result.elapsed = time.time() - start

        if fatal is not None:
            logger.error(f"Batch aborted, verse store unavailable: {fatal}")
            raise fatal

        result.coverage_percent = self.auditor.full_coverage_ratio() * 100
        logger.info(
            f"Batch done: {result.processed} processed, {result.persisted} persisted, "
            f"{result.gapped} gapped, {result.inserted:,} rows inserted, "
            f"coverage {result.coverage_percent:.2f}%"
        )
        return result

    def _deadline_reached(self):
        logger.info("Batch time budget reached, stopping")
        self.cancel_event.set()

    def _run_unit(self, unit: WorkUnit) -> Optional[ImportOutcome]:
        """Worker body. Returns None for units not started or interrupted before fetching."""
        if self.cancel_event.is_set():
            return None
        try:
            return self.orchestrator.process(unit, self.cancel_event)
        except ImportCancelled:
            logger.debug(f"{unit}: cancelled before completion")
            return None
