"""Commit a statement the user reviewed and edited before saving.

The review screen posts the statement header and its (possibly edited)
expenses as JSON alongside the original file. The payload is validated with
Pydantic, persisted atomically, and, when the upload originated from a staged
task, that task's staging entry is deleted afterwards.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .completion import normalize_bank
from .logging_setup import get_logger
from .models import UNKNOWN_BANK, CategoryLike, ExpenseRow, StatementFields
from .persistence import SqlStatementWriter, StatementWriter
from .staging import StagingStore, validate_task_id

_MAX_AMOUNT = Decimal("999999999")

_logger = get_logger("statement_ingest.upload")


class ExpensePayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)

    description: str = Field(min_length=1)
    amount: Decimal = Field(multiple_of=Decimal("0.01"), le=_MAX_AMOUNT, ge=-_MAX_AMOUNT)
    date: dt.date
    category_id: int | None = Field(default=None, alias="categoryId")
    note: str | None = None
    tags: list[int] = Field(default_factory=list)

    @field_validator("amount")
    @classmethod
    def _finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v.quantize(Decimal("0.01"))


class StatementPayload(BaseModel):
    """Reviewed statement: bank, ISO-8601 datetime, and expenses."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    bank: str = ""
    date: dt.datetime
    expenses: list[ExpensePayload] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def _iso_datetime_only(cls, v: Any) -> Any:
        if isinstance(v, str) and "T" not in v:
            raise ValueError("Invalid datetime string! Must be ISO.")
        return v

    @field_validator("date")
    @classmethod
    def _aware(cls, v: dt.datetime) -> dt.datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=dt.UTC)


def commit_reviewed_statement(
    user_id: int,
    payload: StatementPayload | Mapping[str, Any] | str,
    file: bytes,
    name: str,
    *,
    categories: Sequence[CategoryLike] | None = None,
    store: StagingStore | None = None,
    delete_key: str | None = None,
    writer: StatementWriter | None = None,
) -> int:
    """Validate ``payload`` and persist it as one statement; return its id.

    ``payload`` may be a model, a mapping, or the raw JSON string from a form
    field. When ``categories`` is given, every referenced ``categoryId`` must
    be one of them. When ``delete_key`` is given, the staged task is removed
    from ``store`` after the write succeeds and recorded as the statement's
    source task, so committing that task again is recognised as a duplicate.

    Raises ``pydantic.ValidationError`` / ``ValueError`` for invalid input;
    persistence errors propagate and nothing is written.
    """

    if isinstance(payload, StatementPayload):
        parsed = payload
    elif isinstance(payload, str):
        parsed = StatementPayload.model_validate_json(payload)
    else:
        parsed = StatementPayload.model_validate(payload)

    if not file:
        raise ValueError("statement file is empty")
    if not name or not name.strip():
        raise ValueError("statement name is required")
    task_id = validate_task_id(delete_key) if delete_key is not None else None
    if task_id is not None and store is None:
        raise ValueError("delete_key requires a staging store")

    if categories is not None:
        allowed = {c.id for c in categories}
        unknown = sorted(
            {e.category_id for e in parsed.expenses if e.category_id is not None} - allowed
        )
        if unknown:
            raise ValueError(f"Unknown category ids: {unknown}")

    fields = StatementFields(
        name=name.strip(),
        date=parsed.date,
        bank=normalize_bank(parsed.bank) or UNKNOWN_BANK,
        file=file,
        source_task_id=task_id,
    )
    rows = [
        ExpenseRow(
            description=e.description,
            amount=e.amount,
            date=e.date,
            category_id=e.category_id,
            note=e.note,
            tag_ids=tuple(e.tags),
        )
        for e in parsed.expenses
    ]

    write = writer if writer is not None else SqlStatementWriter()
    statement_id = write(user_id, fields, rows)
    if task_id is not None and store is not None:
        store.delete_many(user_id, [task_id])

    _logger.info(
        "upload:statement_created user_id=%d statement_id=%d expenses=%d bank=%s",
        user_id,
        statement_id,
        len(rows),
        fields.bank,
    )
    return statement_id


__all__ = ["ExpensePayload", "StatementPayload", "commit_reviewed_statement"]
