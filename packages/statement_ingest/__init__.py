"""Public interface for the ``statement_ingest`` package.

This module exposes the package's API functions and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .categories import create_category, load_categories, resolve_category
from .commit import commit_tasks
from .completion import parse_completion
from .errors import (
    AlreadyCommittedError,
    ExtractionError,
    InvalidTaskIdError,
    StatementIngestError,
)
from .models import (
    CandidateExpense,
    CategoryRef,
    Committed,
    CommitResult,
    Failed,
    ParsedStatement,
    Skipped,
    StagedTask,
    StagingEntry,
)
from .staging import FileStagingStore, MemoryStagingStore, StagingStore, build_staging_store
from .tasks import discard_tasks, list_pending, stage_statement
from .upload import ExpensePayload, StatementPayload, commit_reviewed_statement

__all__ = [
    # API
    "commit_reviewed_statement",
    "commit_tasks",
    "create_category",
    "discard_tasks",
    "list_pending",
    "load_categories",
    "parse_completion",
    "resolve_category",
    "stage_statement",
    # Staging
    "FileStagingStore",
    "MemoryStagingStore",
    "StagingStore",
    "build_staging_store",
    # Models
    "CandidateExpense",
    "CategoryRef",
    "CommitResult",
    "Committed",
    "ExpensePayload",
    "Failed",
    "ParsedStatement",
    "Skipped",
    "StagedTask",
    "StagingEntry",
    "StatementPayload",
    # Errors
    "AlreadyCommittedError",
    "ExtractionError",
    "InvalidTaskIdError",
    "StatementIngestError",
]
