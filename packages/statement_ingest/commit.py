"""Commit staged statements into the ledger.

Public API:
    - :func:`commit_tasks`

For each requested task the engine re-parses the staged completion against
the caller's categories, drops candidates without a valid amount, writes the
statement and its expenses in one transaction, and only then deletes the
staging entry. Outcomes are reported per task (``Committed`` / ``Skipped`` /
``Failed``); one task's failure never stops the others.

Retry safety: statements record the task they came from. If a previous run
persisted a task but died before deleting its staging entry, the writer
raises :class:`~statement_ingest.errors.AlreadyCommittedError`; the engine
then removes the leftover entry and reports ``Skipped("already_committed")``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime

from .completion import parse_amount, parse_completion
from .errors import AlreadyCommittedError, InvalidTaskIdError
from .logging_setup import get_logger
from .models import (
    UNKNOWN_BANK,
    CandidateExpense,
    CategoryLike,
    Committed,
    CommitResult,
    ExpenseRow,
    Failed,
    Skipped,
    StagingEntry,
    StatementFields,
)
from .persistence import SqlStatementWriter, StatementWriter
from .staging import StagingStore, validate_task_id

_logger = get_logger("statement_ingest.commit")


def _statement_datetime(parsed: date | None, now: Callable[[], datetime]) -> datetime:
    if parsed is None:
        return now()
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=UTC)


def build_expense_rows(candidates: Iterable[CandidateExpense]) -> list[ExpenseRow]:
    """Return persistence rows for candidates with a valid amount, in order."""

    rows: list[ExpenseRow] = []
    for c in candidates:
        amount = parse_amount(c.amount)
        if amount is None:
            continue
        rows.append(
            ExpenseRow(
                description=c.description,
                amount=amount,
                date=c.date,
                category_id=c.category_id,
            )
        )
    return rows


def _delete_entry(store: StagingStore, user_id: int, task_id: str) -> None:
    try:
        store.delete_many(user_id, [task_id])
    except Exception:  # noqa: BLE001 - the statement is durable; a retry skips it
        _logger.warning(
            "commit:staging_delete_failed user_id=%d task_id=%s", user_id, task_id, exc_info=True
        )


def _commit_entry(
    user_id: int,
    task_id: str,
    entry: StagingEntry,
    categories: Sequence[CategoryLike],
    *,
    store: StagingStore,
    writer: StatementWriter,
    now: Callable[[], datetime],
) -> CommitResult:
    t0 = time.perf_counter()
    parsed, candidates = parse_completion(entry.completion, categories)
    rows = build_expense_rows(candidates)
    dropped = len(candidates) - len(rows)
    fields = StatementFields(
        name=entry.name,
        date=_statement_datetime(parsed.statement_date, now),
        bank=parsed.bank or UNKNOWN_BANK,
        file=entry.file,
        source_task_id=task_id,
    )

    try:
        statement_id = writer(user_id, fields, rows)
    except AlreadyCommittedError as e:
        _logger.info(
            "commit:already_committed user_id=%d task_id=%s statement_id=%d",
            user_id,
            task_id,
            e.statement_id,
        )
        _delete_entry(store, user_id, task_id)
        return Skipped(task_id, reason="already_committed", statement_id=e.statement_id)
    except Exception as e:  # noqa: BLE001 - reported per task; the batch continues
        _logger.error(
            "commit:entry_failed user_id=%d task_id=%s error=%s",
            user_id,
            task_id,
            e.__class__.__name__,
            exc_info=True,
        )
        return Failed(task_id, reason=f"{e.__class__.__name__}: {e}")

    _delete_entry(store, user_id, task_id)
    _logger.info(
        (
            "commit:entry_committed user_id=%d task_id=%s statement_id=%d "
            "expenses=%d dropped=%d latency_ms=%.2f"
        ),
        user_id,
        task_id,
        statement_id,
        len(rows),
        dropped,
        (time.perf_counter() - t0) * 1000.0,
    )
    return Committed(
        task_id,
        statement_id=statement_id,
        expense_count=len(rows),
        dropped_count=dropped,
    )


def commit_tasks(
    user_id: int,
    task_ids: Iterable[str],
    categories: Sequence[CategoryLike],
    *,
    store: StagingStore,
    writer: StatementWriter | None = None,
    max_workers: int = 1,
    now: Callable[[], datetime] | None = None,
) -> list[CommitResult]:
    """Commit the staged entries for ``task_ids`` and return one result per id.

    Results follow the order of ``task_ids`` (duplicates collapsed to their
    first occurrence). Unknown ids are ``Skipped``; ids that are not valid
    staging keys are ``Failed``. ``writer`` defaults to
    :class:`~statement_ingest.persistence.SqlStatementWriter` on
    ``DATABASE_URL``. With ``max_workers > 1`` entries are written on a thread
    pool; each entry still persists before its staging entry is deleted.
    """

    if max_workers < 1:
        raise ValueError("max_workers must be a positive integer")
    write = writer if writer is not None else SqlStatementWriter()
    clock = now if now is not None else (lambda: datetime.now(UTC))

    ordered = list(dict.fromkeys(task_ids))
    results: dict[str, CommitResult] = {}
    valid: list[str] = []
    for task_id in ordered:
        try:
            valid.append(validate_task_id(task_id))
        except InvalidTaskIdError as e:
            results[task_id] = Failed(task_id, reason=str(e))

    entries = store.get_many(user_id, valid)
    pending: list[tuple[str, StagingEntry]] = []
    for task_id in valid:
        entry = entries.get(task_id)
        if entry is None:
            _logger.info("commit:entry_missing user_id=%d task_id=%s", user_id, task_id)
            results[task_id] = Skipped(task_id)
        else:
            pending.append((task_id, entry))

    def _run(item: tuple[str, StagingEntry]) -> CommitResult:
        task_id, entry = item
        return _commit_entry(
            user_id, task_id, entry, categories, store=store, writer=write, now=clock
        )

    if max_workers > 1 and len(pending) > 1:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(pending))) as pool:
            outcomes = list(pool.map(_run, pending))
    else:
        outcomes = [_run(item) for item in pending]

    for result in outcomes:
        results[result.task_id] = result

    _logger.info(
        "commit:batch_done user_id=%d requested=%d committed=%d skipped=%d failed=%d",
        user_id,
        len(ordered),
        sum(1 for r in results.values() if isinstance(r, Committed)),
        sum(1 for r in results.values() if isinstance(r, Skipped)),
        sum(1 for r in results.values() if isinstance(r, Failed)),
    )
    return [results[task_id] for task_id in ordered]


__all__ = ["build_expense_rows", "commit_tasks"]
