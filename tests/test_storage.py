from __future__ import annotations

from pathlib import Path

import pytest

from windchimes.models import ChimeConfig, TallyEntry
from windchimes.storage import (
    ChimeStore,
    InMemoryChimeStore,
    SqlChimeStore,
    StorageError,
    create_store,
)


def _entry(resource: str, event: str, day: int, delta: int) -> TallyEntry:
    return TallyEntry(resource=resource, event=event, day=day, delta=delta)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> ChimeStore:
    if request.param == "memory":
        return InMemoryChimeStore()
    sql_store = SqlChimeStore.from_path(tmp_path / "state" / "windchimes.db")
    request.addfinalizer(sql_store.close)
    return sql_store


def test_unknown_keys_read_as_zero(store: ChimeStore) -> None:
    assert store.total("scratch/000", "view/index") == 0
    assert store.first_date("scratch/000", "view/index") == 0
    assert store.list_totals() == []


def test_merge_accumulates_totals_and_first_date(store: ChimeStore) -> None:
    store.merge([_entry("scratch/123", "view/index", 19_001, 2)])
    store.merge(
        [
            _entry("scratch/123", "view/index", 19_000, 3),
            _entry("scratch/123", "view/embed", 19_002, 1),
        ]
    )
    assert store.total("scratch/123", "view/index") == 5
    assert store.total("scratch/123", "view/embed") == 1
    assert store.first_date("scratch/123", "view/index") == 19_000
    assert store.first_date("scratch/123", "view/embed") == 19_002
    assert [(r.event, r.tally) for r in store.list_totals()] == [("view/embed", 1), ("view/index", 5)]


def test_empty_merge_is_noop(store: ChimeStore) -> None:
    store.merge([])
    assert store.list_totals() == []


def test_in_memory_daily_buckets() -> None:
    store = InMemoryChimeStore()
    store.merge([_entry("scratch/123", "view/index", 5, 2), _entry("scratch/123", "view/index", 6, 1)])
    store.merge([_entry("scratch/123", "view/index", 5, 4)])
    assert store.daily("scratch/123", "view/index", 5) == 6
    assert store.daily("scratch/123", "view/index", 6) == 1
    assert store.total("scratch/123", "view/index") == 7


def test_sqlite_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "windchimes.db"
    first = SqlChimeStore.from_path(path)
    first.merge([_entry("scratch/123", "view/index", 19_000, 4)])
    first.close()

    second = SqlChimeStore.from_path(path)
    try:
        assert second.total("scratch/123", "view/index") == 4
        assert second.first_date("scratch/123", "view/index") == 19_000
    finally:
        second.close()


def test_sql_errors_are_wrapped(tmp_path: Path) -> None:
    store = SqlChimeStore.from_path(tmp_path / "windchimes.db")
    with store.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE daily")
    with pytest.raises(StorageError):
        store.merge([_entry("scratch/123", "view/index", 1, 1)])
    # the failed transaction must not have touched totals either
    assert store.total("scratch/123", "view/index") == 0
    with pytest.raises(StorageError):
        store.first_date("scratch/123", "view/index")
    store.close()


def test_create_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(create_store(ChimeConfig()), InMemoryChimeStore)
    sql_store = create_store(ChimeConfig(store_path=str(tmp_path / "a.db")))
    assert isinstance(sql_store, SqlChimeStore)
    sql_store.close()


def test_sqlite_connections_use_wal_and_secure_delete(tmp_path: Path) -> None:
    store = SqlChimeStore.from_path(tmp_path / "windchimes.db")
    try:
        with store.engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
            assert conn.exec_driver_sql("PRAGMA secure_delete").scalar() == 1
    finally:
        store.close()
