"""Ephemeral tallies and the arithmetic that turns them into durable increments."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Iterator

from .models import TallyEntry

TallyKey = tuple[str, str]
EntryKey = tuple[str, str, int]


class TallyStore:
    """In-memory (resource, event) -> count accumulator for one period."""

    def __init__(self) -> None:
        self._counts: dict[TallyKey, int] = defaultdict(int)

    def increment(self, resource: str, event: str) -> None:
        self._counts[(resource, event)] += 1

    def drain(self) -> Iterator[tuple[str, str, int]]:
        """Yield every (resource, event, count) without clearing anything."""
        for (resource, event), count in list(self._counts.items()):
            yield resource, event, count

    def get(self, resource: str, event: str) -> int:
        return self._counts.get((resource, event), 0)

    def __len__(self) -> int:
        return len(self._counts)


def scale_tally(count: int, probability: float) -> int:
    """Undo sampling by dividing by *probability*, truncating toward zero."""
    if probability <= 0.0:
        return 0
    return math.floor(count / probability)


def build_entries(
    tallies: Iterable[tuple[str, str, int]], *, day: int, probability: float
) -> dict[EntryKey, int]:
    """Scale raw period tallies and key them by (resource, event, day).

    Keys whose scaled tally is zero are left out so no record is written
    for them this period.
    """
    entries: dict[EntryKey, int] = {}
    for resource, event, count in tallies:
        scaled = scale_tally(count, probability)
        if scaled > 0:
            entries[(resource, event, day)] = scaled
    return entries


def combine_entries(*batches: dict[EntryKey, int]) -> dict[EntryKey, int]:
    """Sum several keyed batches into one."""
    combined: dict[EntryKey, int] = defaultdict(int)
    for batch in batches:
        for key, delta in batch.items():
            combined[key] += delta
    return dict(combined)


def to_tally_entries(entries: dict[EntryKey, int]) -> list[TallyEntry]:
    return [
        TallyEntry(resource=resource, event=event, day=day, delta=delta)
        for (resource, event, day), delta in sorted(entries.items())
    ]
