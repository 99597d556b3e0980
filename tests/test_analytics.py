from __future__ import annotations

from windchimes.analytics import (
    TallyStore,
    build_entries,
    combine_entries,
    scale_tally,
    to_tally_entries,
)


def test_drain_does_not_clear() -> None:
    tallies = TallyStore()
    tallies.increment("scratch/123", "view/index")
    tallies.increment("scratch/123", "view/index")
    tallies.increment("scratch/456", "view/embed")
    first = sorted(tallies.drain())
    assert first == [("scratch/123", "view/index", 2), ("scratch/456", "view/embed", 1)]
    assert sorted(tallies.drain()) == first
    assert len(tallies) == 2


def test_scale_tally_truncates() -> None:
    assert scale_tally(7, 1.0) == 7
    assert scale_tally(3, 0.5) == 6
    assert scale_tally(1, 0.3) == 3
    assert scale_tally(5, 0.0) == 0


def test_zero_scaled_tallies_are_dropped() -> None:
    entries = build_entries(
        [("scratch/123", "view/index", 3), ("scratch/456", "view/index", 0)],
        day=19_000,
        probability=1.0,
    )
    assert entries == {("scratch/123", "view/index", 19_000): 3}


def test_combine_and_convert_entries() -> None:
    combined = combine_entries(
        {("scratch/123", "view/index", 1): 2},
        {("scratch/123", "view/index", 1): 3, ("scratch/123", "view/index", 2): 1},
    )
    assert combined == {
        ("scratch/123", "view/index", 1): 5,
        ("scratch/123", "view/index", 2): 1,
    }
    entries = to_tally_entries(combined)
    assert [(e.day, e.delta) for e in entries] == [(1, 5), (2, 1)]
