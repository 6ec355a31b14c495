"""Pytest configuration for test isolation.

The file staging backend persists entries under a default project-relative
directory (``./.staging``). When tests run in the same working tree, those
files could leak between tests (a later test would see tasks staged by an
earlier one), so an autouse fixture redirects the staging root to a unique
temporary directory for each test.

Database engines are cached per URL by ``db.client``; they are disposed after
each test so SQLite files in ``tmp_path`` are released.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]


@pytest.fixture(autouse=True)
def _isolate_staging_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Force a per-test staging root so tests don't share on-disk state."""

    staging_root = tmp_path / "staging"
    staging_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("STATEMENT_INGEST_STAGING_DIR", os.fspath(staging_root))
    monkeypatch.setenv("STATEMENT_INGEST_STAGING_BACKEND", "file")
    monkeypatch.delenv("STATEMENT_INGEST_STAGING_TTL_SECONDS", raising=False)
    monkeypatch.delenv("STATEMENT_INGEST_MODEL", raising=False)


@pytest.fixture(autouse=True)
def _dispose_engines() -> Iterator[None]:
    yield
    from db.client import dispose_engines

    dispose_engines()
