"""The Period object: every piece of state scoped to one rotation window."""

from __future__ import annotations

from dataclasses import dataclass, field

from .analytics import TallyStore
from .models import day_index
from .pseudonymize import SALT_SIZE_BYTES, Pseudonymizer


@dataclass
class Period:
    """Salt, abuse counters and tallies for a single period.

    The scheduler never clears a Period in place; it replaces it with a
    fresh one, so the collections below always reset together.
    """

    started_at: float
    day: int
    pseudonymizer: Pseudonymizer
    events_per_user: dict[int, int] = field(default_factory=dict)
    seen_events: set[bytes] = field(default_factory=set)
    tallies: TallyStore = field(default_factory=TallyStore)
    accepted: int = 0

    @classmethod
    def open(cls, started_at: float, *, salt_size: int = SALT_SIZE_BYTES) -> Period:
        return cls(
            started_at=started_at,
            day=day_index(started_at),
            pseudonymizer=Pseudonymizer.generate(salt_size),
        )

    @property
    def user_count(self) -> int:
        return len(self.events_per_user)

    def record(self, user_id: int, event_key: bytes, resource: str, event: str) -> None:
        """Apply an accepted submission to every period collection."""
        self.events_per_user[user_id] = self.events_per_user.get(user_id, 0) + 1
        self.seen_events.add(event_key)
        self.tallies.increment(resource, event)
        self.accepted += 1
