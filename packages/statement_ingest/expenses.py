"""Expense query and edit operations, always scoped to one user.

Callers own the session scope (``db.client.session_scope``); nothing here
commits. Bulk category updates use a single parameterized ``UPDATE ... CASE``
built by SQLAlchemy; ids are never interpolated into SQL text.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from db.models.ledger import Category, Expense, ExpenseTag, Tag
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from .upload import ExpensePayload


@dataclass(frozen=True, slots=True)
class ExpenseFilter:
    """Optional list filters; empty sequences and ``None`` mean "no filter".

    ``keyword`` matches the description case-insensitively; ``uncategorised``
    restricts to expenses without a category and takes precedence over
    ``category_ids``. The date range applies only when both ends are given.
    """

    statement_ids: Sequence[int] = ()
    category_ids: Sequence[int] = ()
    tag_ids: Sequence[int] = ()
    keyword: str | None = None
    uncategorised: bool = False
    start: date | None = None
    end: date | None = None


@dataclass(frozen=True, slots=True)
class MonthTotal:
    month: date
    amount: Decimal
    count: int


# ---------------------------
# Ownership checks
# ---------------------------


def _ensure_owned(session: Session, model, ids: Iterable[int], *, user_id: int, label: str) -> None:
    wanted = set(ids)
    if not wanted:
        return
    found = set(
        session.execute(select(model.id).where(model.id.in_(wanted), model.user_id == user_id))
        .scalars()
        .all()
    )
    missing = sorted(wanted - found)
    if missing:
        raise ValueError(f"Unknown {label} ids: {missing}")


# ---------------------------
# Queries
# ---------------------------


def list_expenses(
    session: Session,
    user_id: int,
    filters: ExpenseFilter | None = None,
) -> list[Expense]:
    """Return the user's expenses matching ``filters``, newest first.

    Category, statement and tags are eagerly loaded for display.
    """

    f = filters or ExpenseFilter()
    stmt = (
        select(Expense)
        .where(Expense.user_id == user_id)
        .options(
            selectinload(Expense.category),
            selectinload(Expense.statement),
            selectinload(Expense.tags).selectinload(ExpenseTag.tag),
        )
        .order_by(Expense.date.desc(), Expense.id.desc())
    )
    if f.statement_ids:
        stmt = stmt.where(Expense.statement_id.in_(f.statement_ids))
    if f.uncategorised:
        stmt = stmt.where(Expense.category_id.is_(None))
    elif f.category_ids:
        stmt = stmt.where(Expense.category_id.in_(f.category_ids))
    if f.tag_ids:
        stmt = stmt.where(Expense.tags.any(ExpenseTag.tag_id.in_(f.tag_ids)))
    if f.start is not None and f.end is not None:
        stmt = stmt.where(Expense.date.between(f.start, f.end))
    if f.keyword and f.keyword.strip():
        needle = f.keyword.strip().lower()
        stmt = stmt.where(func.lower(Expense.description).contains(needle, autoescape=True))
    return list(session.execute(stmt).scalars().all())


def aggregate_by_month(
    session: Session,
    user_id: int,
    *,
    start: date,
    end: date,
) -> list[MonthTotal]:
    """Sum and count the user's expenses per calendar month in ``[start, end]``."""

    rows = session.execute(
        select(Expense.date, Expense.amount).where(
            Expense.user_id == user_id,
            Expense.date.between(start, end),
        )
    ).all()
    totals: dict[date, Decimal] = defaultdict(lambda: Decimal("0.00"))
    counts: dict[date, int] = defaultdict(int)
    for expense_date, amount in rows:
        month = expense_date.replace(day=1)
        totals[month] += Decimal(amount)
        counts[month] += 1
    return [MonthTotal(month=m, amount=totals[m], count=counts[m]) for m in sorted(totals)]


def distinct_years(session: Session, user_id: int) -> list[int]:
    """Return the years that have at least one expense for the user, newest first."""

    year = func.extract("year", Expense.date)
    rows = session.execute(
        select(year).where(Expense.user_id == user_id).distinct().order_by(year.desc())
    ).scalars()
    return [int(y) for y in rows]


# ---------------------------
# Mutations
# ---------------------------


def categorise_expenses(
    session: Session,
    user_id: int,
    assignments: Mapping[int, int],
) -> int:
    """Set ``category_id`` per expense id in one statement; return rows updated.

    Every category must belong to the user; expenses of other users are left
    untouched.
    """

    if not assignments:
        return 0
    _ensure_owned(session, Category, assignments.values(), user_id=user_id, label="category")
    stmt = (
        update(Expense)
        .where(Expense.id.in_(list(assignments)), Expense.user_id == user_id)
        .values(category_id=case(dict(assignments), value=Expense.id))
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount


def _replace_tags(expense: Expense, tag_ids: Iterable[int]) -> None:
    # Reuse surviving links so an unchanged (expense_id, tag_id) row is never re-inserted.
    wanted = list(dict.fromkeys(tag_ids))
    kept = {link.tag_id: link for link in expense.tags if link.tag_id in wanted}
    expense.tags = [kept.get(tag_id) or ExpenseTag(tag_id=tag_id) for tag_id in wanted]


def tag_expenses(
    session: Session,
    user_id: int,
    assignments: Mapping[int, Sequence[int]],
) -> int:
    """Replace each listed expense's tags; return how many expenses were found."""

    if not assignments:
        return 0
    _ensure_owned(
        session,
        Tag,
        (t for tags in assignments.values() for t in tags),
        user_id=user_id,
        label="tag",
    )
    expenses = (
        session.execute(
            select(Expense)
            .where(Expense.id.in_(list(assignments)), Expense.user_id == user_id)
            .options(selectinload(Expense.tags))
        )
        .scalars()
        .all()
    )
    for expense in expenses:
        _replace_tags(expense, assignments[expense.id])
    session.flush()
    return len(expenses)


def create_expense(session: Session, user_id: int, payload: ExpensePayload) -> Expense:
    """Create a manual expense (no statement) for the user."""

    if payload.category_id is not None:
        _ensure_owned(session, Category, [payload.category_id], user_id=user_id, label="category")
    _ensure_owned(session, Tag, payload.tags, user_id=user_id, label="tag")
    expense = Expense(
        description=payload.description,
        amount=payload.amount,
        date=payload.date,
        note=payload.note,
        category_id=payload.category_id,
        user_id=user_id,
    )
    _replace_tags(expense, payload.tags)
    session.add(expense)
    session.flush()
    return expense


def update_expense(
    session: Session,
    user_id: int,
    expense_id: int,
    payload: ExpensePayload,
) -> Expense | None:
    """Overwrite an expense's editable fields and tags; ``None`` if not found."""

    expense = session.execute(
        select(Expense)
        .where(Expense.id == expense_id, Expense.user_id == user_id)
        .options(selectinload(Expense.tags))
    ).scalar_one_or_none()
    if expense is None:
        return None
    if payload.category_id is not None:
        _ensure_owned(session, Category, [payload.category_id], user_id=user_id, label="category")
    _ensure_owned(session, Tag, payload.tags, user_id=user_id, label="tag")
    expense.description = payload.description
    expense.amount = payload.amount
    expense.date = payload.date
    expense.note = payload.note
    expense.category_id = payload.category_id
    _replace_tags(expense, payload.tags)
    session.flush()
    return expense


def delete_expenses(session: Session, user_id: int, expense_ids: Iterable[int]) -> int:
    """Delete the user's expenses by id; return rows deleted."""

    ids = list(dict.fromkeys(expense_ids))
    if not ids:
        return 0
    stmt = (
        delete(Expense)
        .where(Expense.id.in_(ids), Expense.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount


__all__ = [
    "ExpenseFilter",
    "MonthTotal",
    "aggregate_by_month",
    "categorise_expenses",
    "create_expense",
    "delete_expenses",
    "distinct_years",
    "list_expenses",
    "tag_expenses",
    "update_expense",
]
