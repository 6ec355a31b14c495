# ruff: noqa: E402, I001
import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from statement_ingest.errors import ExtractionError
from statement_ingest.models import CategoryRef
from statement_ingest.staging import FileStagingStore
from statement_ingest.tasks import discard_tasks, list_pending, stage_statement

CATEGORIES = [CategoryRef(id=1, title="Food"), CategoryRef(id=2, title="Transport")]


def _fake_extractor(data: bytes) -> str:
    return data.decode("utf-8")


def _fake_completer(text, categories):
    lines = ["BANK,CIMB,2024-02-29"]
    for row in text.splitlines():
        lines.append(row)
    return "\n".join(lines)


@pytest.fixture()
def store(tmp_path: Path) -> FileStagingStore:
    return FileStagingStore(tmp_path / "staging", ttl_seconds=3600)


def test_stage_statement_persists_entry_and_returns_preview(store):
    staged = stage_statement(
        5,
        b"Coffee,4.50,2024-02-01,Food",
        "  feb.pdf ",
        CATEGORIES,
        store=store,
        completer=_fake_completer,
        text_extractor=_fake_extractor,
    )

    assert len(staged.task_id) == 32
    assert staged.name == "feb.pdf"
    assert staged.statement.bank == "CIMB"
    assert [(e.description, e.category_id) for e in staged.statement.expenses] == [
        ("Coffee", 1)
    ]

    entry = store.get_many(5, [staged.task_id])[staged.task_id]
    assert entry.file == b"Coffee,4.50,2024-02-01,Food"
    assert entry.completion.startswith("BANK,CIMB")


def test_restaging_with_task_id_replaces_entry(store):
    kwargs = dict(store=store, completer=_fake_completer, text_extractor=_fake_extractor)
    stage_statement(5, b"A,1.00,2024-02-01,", "a.pdf", CATEGORIES, task_id="fixed", **kwargs)
    stage_statement(5, b"B,2.00,2024-02-01,", "b.pdf", CATEGORIES, task_id="fixed", **kwargs)

    (task,) = list_pending(5, CATEGORIES, store=store)
    assert task.task_id == "fixed"
    assert task.name == "b.pdf"
    assert [e.description for e in task.statement.expenses] == ["B"]


def test_extraction_failure_stages_nothing(store):
    def boom(data: bytes) -> str:
        raise ExtractionError("PDF contains no extractable text")

    with pytest.raises(ExtractionError):
        stage_statement(5, b"x", "x.pdf", CATEGORIES, store=store, text_extractor=boom)
    assert store.task_ids(5) == []


def test_empty_file_is_rejected(store):
    with pytest.raises(ValueError, match="empty"):
        stage_statement(5, b"", "x.pdf", CATEGORIES, store=store)


def test_list_pending_reflects_current_categories(store):
    stage_statement(
        5,
        b"Gym,80.00,2024-02-01,Fitness",
        "g.pdf",
        CATEGORIES,
        store=store,
        completer=_fake_completer,
        text_extractor=_fake_extractor,
        task_id="gym",
    )

    (before,) = list_pending(5, CATEGORIES, store=store)
    assert before.statement.expenses[0].category_id is None

    (after,) = list_pending(5, [*CATEGORIES, CategoryRef(id=3, title="fitness")], store=store)
    assert after.statement.expenses[0].category_id == 3


def test_discard_tasks_removes_entries(store):
    for tid in ("a", "b"):
        stage_statement(
            5,
            b"A,1.00,2024-02-01,",
            f"{tid}.pdf",
            CATEGORIES,
            store=store,
            completer=_fake_completer,
            text_extractor=_fake_extractor,
            task_id=tid,
        )

    discard_tasks(5, ["a", "unknown"], store=store)
    assert [t.task_id for t in list_pending(5, CATEGORIES, store=store)] == ["b"]
