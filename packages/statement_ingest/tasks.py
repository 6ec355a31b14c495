"""Stage, list and discard statement parse tasks.

A task is born when a statement is parsed (``stage_statement``) and lives in
the staging store until it is committed (:mod:`statement_ingest.commit`),
discarded, or expires. Previews are recomputed from the stored completion on
every listing so they always reflect the user's current categories.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Sequence

from .completion import parse_completion
from .extraction import extract_pdf_text, request_completion
from .logging_setup import get_logger
from .models import CategoryLike, StagedTask, StagingEntry
from .staging import StagingStore, validate_task_id

type Completer = Callable[[str, Sequence[CategoryLike]], str]
"""``(statement_text, categories) -> raw completion text``."""

_logger = get_logger("statement_ingest.tasks")


def new_task_id() -> str:
    return uuid.uuid4().hex


def stage_statement(
    user_id: int,
    file: bytes,
    name: str,
    categories: Sequence[CategoryLike],
    *,
    store: StagingStore,
    completer: Completer = request_completion,
    text_extractor: Callable[[bytes], str] = extract_pdf_text,
    task_id: str | None = None,
) -> StagedTask:
    """Extract, ask the model, and stage the completion for review.

    Passing an existing ``task_id`` re-parses that task and replaces its entry.
    Extraction and model failures propagate as
    :class:`~statement_ingest.errors.ExtractionError`; nothing is staged then.
    """

    if not file:
        raise ValueError("statement file is empty")
    tid = validate_task_id(task_id) if task_id is not None else new_task_id()

    text = text_extractor(file)
    completion = completer(text, categories)
    entry = StagingEntry(completion=completion, file=file, name=name)
    store.put(user_id, tid, entry)

    statement, _ = parse_completion(completion, categories)
    _logger.info(
        "tasks:staged user_id=%d task_id=%s name=%s expenses=%d bank=%s",
        user_id,
        tid,
        entry.name,
        len(statement.expenses),
        statement.bank,
    )
    return StagedTask(task_id=tid, name=entry.name, statement=statement)


def list_pending(
    user_id: int,
    categories: Sequence[CategoryLike],
    *,
    store: StagingStore,
) -> list[StagedTask]:
    """Return the user's pending tasks, oldest first, with parsed previews."""

    task_ids = store.task_ids(user_id)
    entries = store.get_many(user_id, task_ids)
    out: list[StagedTask] = []
    for tid in task_ids:
        entry = entries.get(tid)
        if entry is None:  # expired between listing and reading
            continue
        statement, _ = parse_completion(entry.completion, categories)
        out.append(StagedTask(task_id=tid, name=entry.name, statement=statement))
    return out


def discard_tasks(user_id: int, task_ids: Iterable[str], *, store: StagingStore) -> None:
    """Drop pending tasks without committing them. Unknown ids are ignored."""

    ids = list(dict.fromkeys(task_ids))
    store.delete_many(user_id, ids)
    _logger.info("tasks:discarded user_id=%d count=%d", user_id, len(ids))


__all__ = [
    "Completer",
    "discard_tasks",
    "list_pending",
    "new_task_id",
    "stage_statement",
]
