"""Exception types raised by ``statement_ingest``."""

from __future__ import annotations


class StatementIngestError(Exception):
    """Base class for domain errors raised by this package."""


class AlreadyCommittedError(StatementIngestError):
    """A statement for this ``(user_id, task_id)`` already exists."""

    def __init__(self, task_id: str, statement_id: int) -> None:
        super().__init__(f"task {task_id!r} already committed as statement {statement_id}")
        self.task_id = task_id
        self.statement_id = statement_id


class ExtractionError(StatementIngestError):
    """Text extraction or the model call for a statement failed."""


class InvalidTaskIdError(StatementIngestError, ValueError):
    """A task id is not a safe staging key."""
