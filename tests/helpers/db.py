"""DB helpers for tests: bootstrap a temporary SQLite DB and seed reference rows."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from db import Base
from db.client import get_engine, session_scope
from db.models.ledger import Category, Tag
from sqlalchemy import text as sql_text

from statement_ingest.models import CategoryRef


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default). Foreign keys
    are enforced by ``db.client`` for SQLite engines.
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)
    _assert_foreign_keys_enabled(url)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_categories(
    *, database_url: str, user_id: int, titles: Iterable[str]
) -> list[CategoryRef]:
    """Insert one category per title (in order) and return them as refs."""

    with session_scope(database_url=database_url) as session:
        rows = [Category(title=t, user_id=user_id) for t in titles]
        session.add_all(rows)
        session.flush()
        return [CategoryRef(id=r.id, title=r.title, user_id=r.user_id) for r in rows]


def seed_tags(*, database_url: str, user_id: int, titles: Iterable[str]) -> list[int]:
    with session_scope(database_url=database_url) as session:
        rows = [Tag(title=t, user_id=user_id) for t in titles]
        session.add_all(rows)
        session.flush()
        return [r.id for r in rows]


def _assert_foreign_keys_enabled(database_url: str) -> None:
    with session_scope(database_url=database_url) as session:
        enabled = session.execute(sql_text("PRAGMA foreign_keys")).scalar_one()
    assert enabled == 1, "SQLite foreign keys are not enforced on this engine"
