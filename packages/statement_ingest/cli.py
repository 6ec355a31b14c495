# ruff: noqa: I001
"""CLI for the ``statement_ingest`` package.

This module exposes callable command handlers (``cmd_stage``,
``cmd_commit``, ...) and a Typer-based console interface. Environment
variables (notably ``OPENAI_API_KEY`` and ``DATABASE_URL``) are loaded from a
local ``.env`` using ``python-dotenv`` before delegating to command logic.
Business logic lives in ``statement_ingest.tasks``, ``statement_ingest.commit``
and ``statement_ingest.expenses``.

Every handler returns a process exit code; errors are written to stderr.
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging
from .models import CategoryRef, Committed, Failed, ParsedStatement


# ---- Small module-level helpers used by CLI commands -------------------------


def _load_user_categories(user_id: int, database_url: str | None) -> list[CategoryRef]:
    from db.client import session_scope
    from .categories import load_categories

    with session_scope(database_url=database_url) as session:
        return load_categories(session, user_id)


def _print_preview(statement: ParsedStatement, categories: list[CategoryRef]) -> None:
    titles = {c.id: c.title for c in categories}
    print(
        f"bank={statement.bank or '-'}\tdate={statement.statement_date or '-'}"
        f"\texpenses={len(statement.expenses)}\ttotal={statement.total_amount}"
    )
    for e in statement.expenses:
        category = titles.get(e.category_id, "") if e.category_id is not None else ""
        print(f"  {e.date.isoformat()}\t{e.amount}\t{e.description}\t{category}")


# ---- Command handlers --------------------------------------------------------


def cmd_stage(
    file_path: str,
    *,
    user_id: int,
    name: str | None = None,
    database_url: str | None = None,
    model: str | None = None,
) -> int:
    """Parse a statement PDF and stage the result; print the task id and a preview."""

    import os
    from functools import partial

    from . import extraction
    from .errors import ExtractionError
    from .staging import build_staging_store
    from .tasks import stage_statement

    if not os.getenv("OPENAI_API_KEY"):
        print("Error: OPENAI_API_KEY is not set in the environment.", file=sys.stderr)
        return 1

    path = Path(file_path)
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {file_path}", file=sys.stderr)
        return 1

    try:
        categories = _load_user_categories(user_id, database_url)
    except Exception as e:
        print(f"Error: failed to load categories from DB: {e}", file=sys.stderr)
        return 1

    try:
        staged = stage_statement(
            user_id,
            data,
            name or path.name,
            categories,
            store=build_staging_store(),
            completer=partial(extraction.request_completion, model=model),
            text_extractor=extraction.extract_pdf_text,
        )
    except (ExtractionError, ValueError) as e:
        print(f"Error: staging failed: {e}", file=sys.stderr)
        return 1

    print(staged.task_id)
    _print_preview(staged.statement, categories)
    return 0


def cmd_pending(*, user_id: int, database_url: str | None = None) -> int:
    """Print one line per pending task: ``<task_id>\\t<name>\\t<n> expenses``."""

    from .staging import build_staging_store
    from .tasks import list_pending

    try:
        categories = _load_user_categories(user_id, database_url)
    except Exception as e:
        print(f"Error: failed to load categories from DB: {e}", file=sys.stderr)
        return 1

    for task in list_pending(user_id, categories, store=build_staging_store()):
        print(
            f"{task.task_id}\t{task.name}\t{len(task.statement.expenses)} expenses"
            f"\t{task.statement.total_amount}"
        )
    return 0


def cmd_commit(
    task_ids: list[str],
    *,
    user_id: int,
    database_url: str | None = None,
    max_workers: int = 1,
) -> int:
    """Commit staged tasks and print ``<task_id>\\t<status>\\t<detail>`` per task.

    Returns ``1`` when any task failed, ``0`` otherwise.
    """

    from .commit import commit_tasks
    from .persistence import SqlStatementWriter
    from .staging import build_staging_store

    try:
        categories = _load_user_categories(user_id, database_url)
    except Exception as e:
        print(f"Error: failed to load categories from DB: {e}", file=sys.stderr)
        return 1

    try:
        results = commit_tasks(
            user_id,
            task_ids,
            categories,
            store=build_staging_store(),
            writer=SqlStatementWriter(database_url),
            max_workers=max_workers,
        )
    except ValueError as e:
        print(f"Error: commit failed: {e}", file=sys.stderr)
        return 1

    for r in results:
        if isinstance(r, Committed):
            detail = f"statement={r.statement_id} expenses={r.expense_count}"
        else:
            detail = r.reason
        print(f"{r.task_id}\t{r.status}\t{detail}")
    return 1 if any(isinstance(r, Failed) for r in results) else 0


def cmd_discard(task_ids: list[str], *, user_id: int) -> int:
    from .errors import InvalidTaskIdError
    from .staging import build_staging_store
    from .tasks import discard_tasks

    try:
        discard_tasks(user_id, task_ids, store=build_staging_store())
    except InvalidTaskIdError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_expenses(
    *,
    user_id: int,
    database_url: str | None = None,
    keyword: str | None = None,
    statement_ids: list[int] | None = None,
    category_ids: list[int] | None = None,
    uncategorised: bool = False,
    start: date | None = None,
    end: date | None = None,
) -> int:
    """Print the user's expenses, newest first, as tab-separated lines."""

    from db.client import session_scope
    from .expenses import ExpenseFilter, list_expenses

    filters = ExpenseFilter(
        statement_ids=tuple(statement_ids or ()),
        category_ids=tuple(category_ids or ()),
        keyword=keyword,
        uncategorised=uncategorised,
        start=start,
        end=end,
    )
    try:
        with session_scope(database_url=database_url) as session:
            rows = [
                (
                    e.id,
                    e.date.isoformat(),
                    e.amount,
                    e.description,
                    e.category.title if e.category is not None else "",
                    e.statement.name if e.statement is not None else "",
                )
                for e in list_expenses(session, user_id, filters)
            ]
    except Exception as e:
        print(f"Error: failed to list expenses: {e}", file=sys.stderr)
        return 1

    for row in rows:
        print("\t".join(str(v) for v in row))
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Parse bank statement PDFs into staged expense lists, then commit them to the "
        "ledger. Loads OPENAI_API_KEY and DATABASE_URL from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
USER_ID_OPTION: OptionInfo = typer.Option(..., "--user-id", min=0, help="Owner of the data.")
TASK_IDS_ARGUMENT = typer.Argument(..., help="One or more staged task ids.")


@app.command("stage")
def stage_cmd(
    file_path: Annotated[
        Path, typer.Argument(help="Statement PDF to parse.", dir_okay=False, exists=False)
    ],
    *,
    user_id: Annotated[int, USER_ID_OPTION],
    name: str | None = typer.Option(None, help="Display name (defaults to the file name)."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    model: str | None = typer.Option(
        None, help="Override the model (falls back to STATEMENT_INGEST_MODEL, then gpt-4o)."
    ),
) -> None:
    """Parse a statement and stage it for review."""

    raise typer.Exit(
        cmd_stage(
            str(file_path), user_id=user_id, name=name, database_url=database_url, model=model
        )
    )


@app.command("pending")
def pending_cmd(
    *,
    user_id: Annotated[int, USER_ID_OPTION],
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """List staged tasks awaiting confirmation."""

    raise typer.Exit(cmd_pending(user_id=user_id, database_url=database_url))


@app.command("commit")
def commit_cmd(
    task_ids: Annotated[list[str], TASK_IDS_ARGUMENT],
    *,
    user_id: Annotated[int, USER_ID_OPTION],
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    max_workers: int = typer.Option(1, min=1, help="Write statements on this many threads."),
) -> None:
    """Commit staged tasks as statements with their expenses."""

    raise typer.Exit(
        cmd_commit(
            task_ids, user_id=user_id, database_url=database_url, max_workers=max_workers
        )
    )


@app.command("discard")
def discard_cmd(
    task_ids: Annotated[list[str], TASK_IDS_ARGUMENT],
    *,
    user_id: Annotated[int, USER_ID_OPTION],
) -> None:
    """Drop staged tasks without committing them."""

    raise typer.Exit(cmd_discard(task_ids, user_id=user_id))


@app.command("expenses")
def expenses_cmd(
    *,
    user_id: Annotated[int, USER_ID_OPTION],
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    keyword: str | None = typer.Option(None, help="Case-insensitive description match."),
    statement_id: list[int] | None = typer.Option(None, help="Restrict to statement id(s)."),
    category_id: list[int] | None = typer.Option(None, help="Restrict to category id(s)."),
    uncategorised: bool = typer.Option(False, help="Only expenses without a category."),
    start: str | None = typer.Option(None, help="Range start, YYYY-MM-DD (needs --end)."),
    end: str | None = typer.Option(None, help="Range end, YYYY-MM-DD (needs --start)."),
) -> None:
    """List committed expenses, newest first."""

    try:
        start_d = date.fromisoformat(start) if start else None
        end_d = date.fromisoformat(end) if end else None
    except ValueError as e:
        print(f"Error: invalid date: {e}", file=sys.stderr)
        raise typer.Exit(1) from e

    raise typer.Exit(
        cmd_expenses(
            user_id=user_id,
            database_url=database_url,
            keyword=keyword,
            statement_ids=statement_id,
            category_ids=category_id,
            uncategorised=uncategorised,
            start=start_d,
            end=end_d,
        )
    )


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m statement_ingest.cli`
    app()
