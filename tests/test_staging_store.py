# ruff: noqa: E402, I001
import os
import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from statement_ingest.errors import InvalidTaskIdError
from statement_ingest.models import StagingEntry
from statement_ingest.staging import (
    DEFAULT_TTL_SECONDS,
    FileStagingStore,
    MemoryStagingStore,
    build_staging_store,
    validate_task_id,
)


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _entry(name: str = "jan.pdf", completion: str = "BANK,DBS") -> StagingEntry:
    return StagingEntry(completion=completion, file=b"%PDF-1.4\x00\xff", name=name)


@pytest.fixture(params=["memory", "file"])
def make_store(request, tmp_path: Path):
    def _make(*, ttl_seconds: float = 60.0, clock=None):
        clock = clock or FakeClock()
        if request.param == "memory":
            return MemoryStagingStore(ttl_seconds=ttl_seconds, clock=clock)
        return FileStagingStore(tmp_path / "store", ttl_seconds=ttl_seconds, clock=clock)

    return _make


def test_put_get_delete(make_store):
    store = make_store()
    store.put(1, "task-a", _entry())

    got = store.get_many(1, ["task-a", "missing"])
    assert list(got) == ["task-a"]
    assert got["task-a"].file == b"%PDF-1.4\x00\xff"
    assert got["task-a"].completion == "BANK,DBS"

    store.delete_many(1, ["task-a", "missing"])
    assert store.get_many(1, ["task-a"]) == {}


def test_entries_are_scoped_per_user(make_store):
    store = make_store()
    store.put(1, "shared", _entry(name="one.pdf"))
    store.put(2, "shared", _entry(name="two.pdf"))

    assert store.get_many(1, ["shared"])["shared"].name == "one.pdf"
    assert store.get_many(2, ["shared"])["shared"].name == "two.pdf"
    store.delete_many(1, ["shared"])
    assert store.task_ids(1) == []
    assert store.task_ids(2) == ["shared"]


def test_put_replaces_existing_entry(make_store):
    store = make_store()
    store.put(1, "t", _entry(completion="first"))
    store.put(1, "t", _entry(completion="second"))
    assert store.get_many(1, ["t"])["t"].completion == "second"


def test_task_ids_oldest_first(make_store):
    clock = FakeClock()
    store = make_store(clock=clock)
    for tid in ("c", "a", "b"):
        store.put(1, tid, _entry())
        clock.now += 1
    assert store.task_ids(1) == ["c", "a", "b"]


def test_entries_expire_after_ttl(make_store):
    clock = FakeClock()
    store = make_store(ttl_seconds=10, clock=clock)
    store.put(1, "old", _entry())
    clock.now += 5
    store.put(1, "new", _entry())

    clock.now += 6
    assert list(store.get_many(1, ["old", "new"])) == ["new"]
    assert store.task_ids(1) == ["new"]

    clock.now += 10
    assert store.purge_expired() == 1
    assert store.get_many(1, ["new"]) == {}


@pytest.mark.parametrize("bad", ["", "../etc", "a/b", "x" * 65, "white space"])
def test_invalid_task_ids_are_rejected(make_store, bad):
    store = make_store()
    with pytest.raises(InvalidTaskIdError):
        store.put(1, bad, _entry())
    with pytest.raises(ValueError):
        validate_task_id(bad)


def test_negative_user_id_is_rejected(make_store):
    with pytest.raises(ValueError, match="user id"):
        make_store().put(-1, "t", _entry())


def test_file_store_layout_and_corrupt_entry(tmp_path: Path):
    store = FileStagingStore(tmp_path / "root", ttl_seconds=60)
    store.put(3, "abc", _entry())

    path = tmp_path / "root" / "3" / "abc.json"
    assert path.is_file()
    assert not list(path.parent.glob("*.tmp"))

    path.write_text("{not json", encoding="utf-8")
    assert store.get_many(3, ["abc"]) == {}
    assert not path.exists()

    store.put(3, "abc", _entry())
    path.write_bytes(b"\xff\xfe")
    assert store.get_many(3, ["abc"]) == {}
    assert not path.exists()


def test_build_staging_store_uses_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STATEMENT_INGEST_STAGING_DIR", os.fspath(tmp_path / "envroot"))
    store = build_staging_store()
    assert isinstance(store, FileStagingStore)
    assert store.root == (tmp_path / "envroot").resolve()
    assert store.ttl_seconds == DEFAULT_TTL_SECONDS

    monkeypatch.setenv("STATEMENT_INGEST_STAGING_BACKEND", "memory")
    monkeypatch.setenv("STATEMENT_INGEST_STAGING_TTL_SECONDS", "30")
    store = build_staging_store()
    assert isinstance(store, MemoryStagingStore)
    assert store.ttl_seconds == 30.0

    monkeypatch.setenv("STATEMENT_INGEST_STAGING_BACKEND", "redis")
    with pytest.raises(ValueError, match="redis"):
        build_staging_store()
