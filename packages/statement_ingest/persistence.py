# ruff: noqa: I001
"""Persistence integration for statement_ingest.

Functions here write statements and their expenses to the shared database
owned by ``libs/db``. They rely on the ORM models in ``db.models.ledger`` and
on sessions provided by ``db.client``.

Scope:
- Create one statement together with all of its expenses in a single
  transaction (the caller's session scope is the atomic unit).
- Look up the statement previously committed from a staging task so that a
  retried commit is recognised instead of duplicated.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import Expense, ExpenseTag, Statement
from .errors import AlreadyCommittedError
from .models import ExpenseRow, StatementFields

type StatementWriter = Callable[[int, StatementFields, Sequence[ExpenseRow]], int]
"""``(user_id, statement, expenses) -> statement_id``; must be all-or-nothing."""


def find_statement_id_for_task(session: Session, *, user_id: int, task_id: str) -> int | None:
    return session.execute(
        select(Statement.id).where(
            Statement.user_id == user_id,
            Statement.source_task_id == task_id,
        )
    ).scalar_one_or_none()


def _expense_from_row(row: ExpenseRow, *, user_id: int) -> Expense:
    expense = Expense(
        description=row.description,
        amount=row.amount,
        date=row.date,
        note=row.note,
        category_id=row.category_id,
        user_id=user_id,
    )
    expense.tags = [ExpenseTag(tag_id=tag_id) for tag_id in dict.fromkeys(row.tag_ids)]
    return expense


def create_statement_with_expenses(
    session: Session,
    *,
    user_id: int,
    statement: StatementFields,
    expenses: Sequence[ExpenseRow],
) -> int:
    """Add one statement and all of its expenses to ``session`` and flush.

    Nothing is committed here: the caller's transaction decides whether the
    statement and its expenses become visible together or not at all.

    Raises :class:`AlreadyCommittedError` when ``statement.source_task_id`` is
    set and this user already has a statement from that task.
    """

    if statement.source_task_id is not None:
        existing = find_statement_id_for_task(
            session, user_id=user_id, task_id=statement.source_task_id
        )
        if existing is not None:
            raise AlreadyCommittedError(statement.source_task_id, existing)

    record = Statement(
        name=statement.name,
        date=statement.date,
        bank=statement.bank,
        file=statement.file,
        user_id=user_id,
        source_task_id=statement.source_task_id,
    )
    record.expenses = [_expense_from_row(row, user_id=user_id) for row in expenses]
    session.add(record)
    session.flush()
    return record.id


class SqlStatementWriter:
    """Default :data:`StatementWriter`: one ``session_scope`` per statement.

    Each call opens its own session, so the writer is safe to share across
    threads.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url

    def __call__(
        self,
        user_id: int,
        statement: StatementFields,
        expenses: Sequence[ExpenseRow],
    ) -> int:
        with session_scope(database_url=self.database_url) as session:
            return create_statement_with_expenses(
                session, user_id=user_id, statement=statement, expenses=expenses
            )


__all__ = [
    "SqlStatementWriter",
    "StatementWriter",
    "create_statement_with_expenses",
    "find_statement_id_for_task",
]
