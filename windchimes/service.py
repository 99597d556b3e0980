"""Service orchestrating submission, rotation, and the read path."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from .models import ChimeConfig, EventKind, TotalRecord, is_valid_event, is_valid_resource
from .scheduler import PeriodScheduler
from .storage import ChimeStore, StorageError, create_store

logger = logging.getLogger(__name__)


class ChimeService:
    """Coordinates the abuse-guarded counter and its durable store."""

    def __init__(
        self,
        config: ChimeConfig,
        store: ChimeStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store = store or create_store(config)
        self.scheduler = PeriodScheduler(config, self.store, clock=clock, sleep=sleep)

    def submit(self, user_id: str, resource: str, event: str) -> None:
        """Count a view if it survives the abuse guard. Never raises."""
        try:
            self.scheduler.submit(user_id, resource, event)
        except Exception:
            logger.exception("Submission dropped by an unexpected error")

    def get_total(self, resource: str, event: str) -> int:
        """Return the durable total, or 0 for invalid, unseen or unreadable keys."""
        if not is_valid_resource(resource) or not is_valid_event(event):
            return 0
        try:
            return self.store.total(resource, event)
        except StorageError:
            logger.warning("Total lookup failed for %s %s", resource, event, exc_info=True)
            return 0

    def get_first_date(self, resource: str, event: str) -> int:
        """Return the first day index *resource* was counted for *event*, or 0."""
        if not is_valid_resource(resource) or not is_valid_event(event):
            return 0
        try:
            return self.store.first_date(resource, event)
        except StorageError:
            logger.warning("First date lookup failed for %s %s", resource, event, exc_info=True)
            return 0

    def get_first_seen(self, resource: str) -> int:
        """Earliest first date across every event kind of *resource*, or 0."""
        days = [self.get_first_date(resource, kind.value) for kind in EventKind]
        observed = [day for day in days if day > 0]
        return min(observed) if observed else 0

    def flush_to_database(self) -> bool:
        return self.scheduler.flush_to_database()

    def start_timers(self) -> None:
        self.scheduler.start_timers()

    def shutdown(self) -> None:
        """Final flush, then release the store."""
        self.scheduler.shutdown()
        self.store.close()

    def close(self) -> None:
        """Release the store without flushing; for read-only callers."""
        self.store.close()

    def diagnostics(self) -> dict[str, Any]:
        """Counters for operators; never served to submitters."""
        period = self.scheduler.period
        return {
            "state": self.scheduler.state.value,
            "outcomes": self.scheduler.outcomes(),
            "period_day": period.day,
            "period_users": period.user_count,
            "backlog_entries": self.scheduler.backlog_size,
        }

    def export_totals(self) -> list[TotalRecord]:
        return self.store.list_totals()

    def dump_json(self) -> str:
        """Serialize every cumulative total to JSON."""
        payload = [record.model_dump() for record in self.export_totals()]
        return json.dumps(payload, indent=2)
