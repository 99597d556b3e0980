"""Period lifecycle: submission, rotation, flushing and shutdown.

The :class:`PeriodScheduler` owns the active :class:`Period`. One lock
guards the period and the scheduler state; submissions hold it for the
length of the abuse-guard pipeline. A flush swaps in a fresh period under
that lock, then scales the retired tallies and merges them into the durable
store without holding it, so slow storage never stalls submissions.

Merges are retried with bounded backoff. Entries from a merge that still
fails are kept in a backlog and folded into the next flush.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable
from enum import Enum

from .analytics import EntryKey, build_entries, combine_entries, to_tally_entries
from .guard import AbuseGuard, Verdict
from .models import ChimeConfig, RejectReason
from .period import Period
from .retry import merge_with_retry
from .storage import ChimeStore, StorageError

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    ACTIVE = "active"
    FLUSHING = "flushing"
    TERMINATED = "terminated"


class PeriodScheduler:
    """Owns the active period and moves its tallies into durable storage.

    Parameters
    ----------
    config:
        Limits, sampling probability, rotation interval and retry policy.
    store:
        Durable store receiving merged tallies.
    clock:
        Returns the current time in seconds since the epoch.
    sleep:
        Used between merge retries.
    """

    def __init__(
        self,
        config: ChimeConfig,
        store: ChimeStore,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._guard = AbuseGuard(config)
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._period = self._open_period()
        self._state = SchedulerState.ACTIVE
        self._accepting = True
        self._backlog: dict[EntryKey, int] = {}
        self._outcomes: Counter[str] = Counter()
        self._timer_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def _open_period(self) -> Period:
        return Period.open(self._clock(), salt_size=self.config.salt_size_bytes)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def period(self) -> Period:
        return self._period

    def submit(self, user_id: str, resource: str, event: str) -> Verdict:
        """Run one submission through the abuse guard against the active period."""
        with self._lock:
            if not self._accepting:
                verdict = Verdict.reject(RejectReason.SHUTTING_DOWN)
            else:
                verdict = self._guard.evaluate(self._period, user_id, resource, event)
            self._outcomes["accepted" if verdict.accepted else verdict.reason.value] += 1
        return verdict

    def _capture(self, period: Period, backlog: dict[EntryKey, int]) -> dict[EntryKey, int]:
        # The period has been retired or frozen under the lock, so it is read without it.
        entries = build_entries(
            period.tallies.drain(),
            day=period.day,
            probability=self.config.counting_probability,
        )
        return combine_entries(backlog, entries)

    def _merge(self, entries: dict[EntryKey, int]) -> bool:
        if not entries:
            return True
        batch = to_tally_entries(entries)
        try:
            merge_with_retry(self._store, batch, self.config.retry, sleep=self._sleep)
        except StorageError:
            logger.warning(
                "Flush of %d entries failed; keeping them for the next flush",
                len(batch),
                exc_info=True,
            )
            return False
        except Exception:
            logger.exception(
                "Flush of %d entries failed unexpectedly; keeping them for the next flush",
                len(batch),
            )
            return False
        return True

    def flush_to_database(self) -> bool:
        """Merge the active period into storage and start a new period.

        Returns ``True`` when everything captured (including any backlog)
        reached the store.
        """
        with self._flush_lock:
            fresh = self._open_period()
            with self._lock:
                if self._state is SchedulerState.TERMINATED or not self._accepting:
                    logger.debug("Flush skipped; scheduler is shutting down")
                    return False
                self._state = SchedulerState.FLUSHING
                ended = self._period
                backlog, self._backlog = self._backlog, {}
                self._period = fresh

            entries: dict[EntryKey, int] = {}
            merged = False
            try:
                entries = self._capture(ended, backlog)
                merged = self._merge(entries)
            finally:
                with self._lock:
                    if not merged:
                        self._backlog = combine_entries(self._backlog, entries or backlog)
                    self._state = SchedulerState.ACTIVE
            logger.info(
                "Rotated period (day=%d users=%d accepted=%d entries=%d merged=%s)",
                ended.day,
                ended.user_count,
                ended.accepted,
                len(entries),
                merged,
            )
            return merged

    def shutdown(self) -> bool:
        """Stop the timers and merge the active period one last time.

        The period is not reset; once this returns the scheduler is
        terminated and rejects further submissions.
        """
        self.stop_timers()
        with self._flush_lock:
            with self._lock:
                if self._state is SchedulerState.TERMINATED:
                    return True
                self._accepting = False
                self._state = SchedulerState.FLUSHING
                backlog, self._backlog = self._backlog, {}

            entries: dict[EntryKey, int] = {}
            merged = False
            try:
                entries = self._capture(self._period, backlog)
                merged = self._merge(entries)
            finally:
                with self._lock:
                    self._state = SchedulerState.TERMINATED
                if not merged:
                    logger.error("Final flush failed; %d entries were not persisted", len(entries))
                else:
                    logger.info("Final flush merged %d entries", len(entries))
            return merged

    def start_timers(self) -> None:
        """Start a background thread that rotates the period at a fixed interval."""
        if self._timer_thread is not None:
            return

        self._stop_event.clear()

        def _run() -> None:
            while not self._stop_event.wait(self.config.period_seconds):
                try:
                    self.flush_to_database()
                except Exception:
                    logger.exception("Period rotation failed; retrying at the next tick")

        self._timer_thread = threading.Thread(target=_run, name="windchimes-rotation", daemon=True)
        self._timer_thread.start()
        logger.info("Period rotation started (interval=%.0fs)", self.config.period_seconds)

    @property
    def timers_running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()

    def stop_timers(self) -> None:
        self._stop_event.set()
        if self._timer_thread is not None:
            self._timer_thread.join(timeout=5.0)
            self._timer_thread = None
            logger.info("Period rotation stopped")

    @property
    def backlog_size(self) -> int:
        with self._lock:
            return len(self._backlog)

    def outcomes(self) -> dict[str, int]:
        """Accepted and per-reason rejected counts since startup."""
        with self._lock:
            return dict(self._outcomes)
