"""Data models and type aliases for ``statement_ingest``.

Parsed results (``CandidateExpense``/``ParsedStatement``) are frozen
dataclasses: they are produced in memory by the completion parser and never
serialized. ``StagingEntry`` is a Pydantic model because it round-trips
through the on-disk staging store. Commit outcomes are a closed union of three
small result types so batch callers can pattern-match on them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Banks
# ---------------------------------------------------------------------------

KNOWN_BANKS: tuple[str, ...] = ("DBS", "CITI", "CIMB", "UOB", "HSBC")

# Persisted in ``statements.bank`` when the completion names no known bank.
UNKNOWN_BANK = "No"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryLike(Protocol):
    """Anything with an ``id`` and a ``title``: ``CategoryRef`` or the ORM row."""

    @property
    def id(self) -> int: ...

    @property
    def title(self) -> str: ...


@dataclass(frozen=True, slots=True)
class CategoryRef:
    """Read-only view of a user's category, as supplied by callers."""

    id: int
    title: str
    color: str | None = None
    user_id: int | None = None


# ---------------------------------------------------------------------------
# Parse results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CandidateExpense:
    """One parsed line item before persistence.

    ``amount`` is always a finite ``Decimal`` with exactly two fractional
    digits; lines whose amount cannot be read that way never become
    candidates. ``category_id`` is set only when ``category_label`` matched
    one of the caller's categories.
    """

    description: str
    amount: Decimal
    date: date
    category_label: str | None = None
    category_id: int | None = None


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    """Header-level result for one statement plus its candidates in source order."""

    bank: str | None = None
    statement_date: date | None = None
    expenses: tuple[CandidateExpense, ...] = ()

    @property
    def total_amount(self) -> Decimal:
        return sum((e.amount for e in self.expenses), Decimal("0.00"))


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------


class StagingEntry(BaseModel):
    """A pending parse result held until the user confirms or discards it.

    ``file`` is base64 encoded when serialized to JSON. ``created_at`` is epoch
    seconds and drives TTL expiry in the staging store.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    completion: str
    file: bytes
    name: str
    created_at: float = Field(default_factory=time.time)

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("name must be non-empty")
        return s


# ---------------------------------------------------------------------------
# Persistence payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementFields:
    name: str
    date: datetime
    bank: str
    file: bytes
    source_task_id: str | None = None


@dataclass(frozen=True, slots=True)
class ExpenseRow:
    description: str
    amount: Decimal
    date: date
    category_id: int | None = None
    note: str | None = None
    tag_ids: tuple[int, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Commit outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Committed:
    task_id: str
    statement_id: int
    expense_count: int
    dropped_count: int = 0
    status: Literal["committed"] = "committed"


@dataclass(frozen=True, slots=True)
class Skipped:
    """Nothing was written for this task.

    ``reason`` is ``"missing"`` when no staging entry exists (already committed,
    discarded, expired or never staged) and ``"already_committed"`` when a
    statement from this task was found in the database.
    """

    task_id: str
    reason: Literal["missing", "already_committed"] = "missing"
    statement_id: int | None = None
    status: Literal["skipped"] = "skipped"


@dataclass(frozen=True, slots=True)
class Failed:
    task_id: str
    reason: str
    status: Literal["failed"] = "failed"


type CommitResult = Committed | Skipped | Failed
"""Per-task outcome of :func:`statement_ingest.commit.commit_tasks`."""


@dataclass(frozen=True, slots=True)
class StagedTask:
    """Returned by ``stage_statement``: the new task id and a review preview."""

    task_id: str
    name: str
    statement: ParsedStatement
