"""Public API facade for the view counter."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from .models import ChimeConfig, TotalRecord
from .service import ChimeService
from .storage import ChimeStore


class ChimeAPI:
    """High-level façade consumed by the HTTP layer and the CLI."""

    def __init__(
        self,
        config: ChimeConfig,
        store: ChimeStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._service = ChimeService(config, store, clock=clock, sleep=sleep)

    @property
    def config(self) -> ChimeConfig:
        return self._service.config

    def submit(self, user_id: str, resource: str, event: str) -> None:
        """Record a view. Rejections are silent."""
        self._service.submit(user_id, resource, event)

    def get_total(self, resource: str, event: str) -> int:
        return self._service.get_total(resource, event)

    def get_first_date(self, resource: str, event: str | None = None) -> int:
        """Day index of the first counted view; all event kinds when *event* is None."""
        if event is None:
            return self._service.get_first_seen(resource)
        return self._service.get_first_date(resource, event)

    def flush_to_database(self) -> None:
        self._service.flush_to_database()

    def start_timers(self) -> None:
        self._service.start_timers()

    def shutdown(self) -> None:
        self._service.shutdown()

    def close(self) -> None:
        self._service.close()

    def diagnostics(self) -> dict[str, Any]:
        return self._service.diagnostics()

    def snapshot(self) -> list[TotalRecord]:
        """Return every cumulative total."""
        return self._service.export_totals()

    def snapshot_json(self) -> str:
        return self._service.dump_json()


def build_api(config: ChimeConfig | None = None, store: ChimeStore | None = None) -> ChimeAPI:
    """Convenience constructor with defaults."""
    return ChimeAPI(config or ChimeConfig(), store)
