"""Staging store for parsed-but-unconfirmed statements.

A staging entry holds the raw model completion, the original file bytes and
the file name for one ``(user_id, task_id)`` between the parse request and
the user's confirmation. Entry existence is the only "still pending" signal:
committing or discarding a task deletes its entry.

Two backends implement :class:`StagingStore`:

- :class:`MemoryStagingStore`: a lock-guarded dict, for tests and
  single-process deployments.
- :class:`FileStagingStore`: one JSON file per entry under
  ``<root>/<user_id>/<task_id>.json``. Root defaults to ``./.staging`` and can
  be overridden with ``STATEMENT_INGEST_STAGING_DIR``. Writes target ``.tmp``
  first and then ``os.replace`` into place.

Both expire entries ``ttl_seconds`` after their ``put`` (default 6 hours,
``STATEMENT_INGEST_STAGING_TTL_SECONDS``). Expired entries are invisible to
readers and removed lazily, or eagerly via ``purge_expired()``.

Missing ids are never an error: ``get_many`` omits them and ``delete_many``
ignores them. Operations on different keys do not interfere; concurrent
``put``/``delete`` on the same key are last-writer-wins.
"""

from __future__ import annotations

import contextlib
import os
import re
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .errors import InvalidTaskIdError
from .logging_setup import get_logger
from .models import StagingEntry

DEFAULT_TTL_SECONDS: float = 6 * 60 * 60

_TASK_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_logger = get_logger("statement_ingest.staging")


def validate_task_id(task_id: str) -> str:
    """Ensure ``task_id`` is a safe key (also used as a file name)."""

    if not isinstance(task_id, str) or not _TASK_ID_RE.fullmatch(task_id):
        raise InvalidTaskIdError(
            f"Invalid task id {task_id!r}: expected 1-64 characters of [A-Za-z0-9_-]"
        )
    return task_id


def _validate_user_id(user_id: int) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 0:
        raise ValueError(f"Invalid user id {user_id!r}: expected a non-negative integer")
    return user_id


def _ttl_from_env() -> float:
    raw = os.getenv("STATEMENT_INGEST_STAGING_TTL_SECONDS")
    if raw is None or not raw.strip():
        return DEFAULT_TTL_SECONDS
    try:
        ttl = float(raw)
    except ValueError as e:
        raise ValueError(f"STATEMENT_INGEST_STAGING_TTL_SECONDS must be a number: {raw!r}") from e
    if ttl <= 0:
        raise ValueError("STATEMENT_INGEST_STAGING_TTL_SECONDS must be positive")
    return ttl


class StagingStore(Protocol):
    """Keyed ``(user_id, task_id) -> StagingEntry`` store with TTL expiry."""

    def put(self, user_id: int, task_id: str, entry: StagingEntry) -> None: ...

    def get_many(self, user_id: int, task_ids: Iterable[str]) -> dict[str, StagingEntry]: ...

    def delete_many(self, user_id: int, task_ids: Iterable[str]) -> None: ...

    def task_ids(self, user_id: int) -> list[str]: ...

    def purge_expired(self) -> int: ...


class _TtlMixin:
    ttl_seconds: float
    _clock: Callable[[], float]

    def _stamp(self, entry: StagingEntry) -> StagingEntry:
        # Replace-on-put: the stored entry carries the store's notion of "now".
        return entry.model_copy(update={"created_at": self._clock()})

    def _expired(self, entry: StagingEntry) -> bool:
        return self._clock() - entry.created_at >= self.ttl_seconds


# ----------------------------------------------------------------------------
# In-memory backend
# ----------------------------------------------------------------------------


class MemoryStagingStore(_TtlMixin):
    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else _ttl_from_env()
        self._clock = clock
        self._entries: dict[tuple[int, str], StagingEntry] = {}
        self._lock = threading.Lock()

    def put(self, user_id: int, task_id: str, entry: StagingEntry) -> None:
        key = (_validate_user_id(user_id), validate_task_id(task_id))
        stamped = self._stamp(entry)
        with self._lock:
            self._entries[key] = stamped

    def get_many(self, user_id: int, task_ids: Iterable[str]) -> dict[str, StagingEntry]:
        _validate_user_id(user_id)
        out: dict[str, StagingEntry] = {}
        with self._lock:
            for task_id in task_ids:
                key = (user_id, validate_task_id(task_id))
                entry = self._entries.get(key)
                if entry is None:
                    continue
                if self._expired(entry):
                    del self._entries[key]
                    continue
                out[task_id] = entry
        return out

    def delete_many(self, user_id: int, task_ids: Iterable[str]) -> None:
        _validate_user_id(user_id)
        with self._lock:
            for task_id in task_ids:
                self._entries.pop((user_id, validate_task_id(task_id)), None)

    def task_ids(self, user_id: int) -> list[str]:
        _validate_user_id(user_id)
        with self._lock:
            live = [
                (entry.created_at, tid)
                for (uid, tid), entry in self._entries.items()
                if uid == user_id and not self._expired(entry)
            ]
        return [tid for _, tid in sorted(live)]

    def purge_expired(self) -> int:
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._expired(e)]
            for k in expired:
                del self._entries[k]
        return len(expired)


# ----------------------------------------------------------------------------
# File backend
# ----------------------------------------------------------------------------


def _get_staging_root() -> Path:
    """Return the staging root directory.

    Default: ``./.staging`` under the current working directory.
    Override: ``STATEMENT_INGEST_STAGING_DIR`` (absolute or relative).
    """

    root = os.getenv("STATEMENT_INGEST_STAGING_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".staging").resolve()


class FileStagingStore(_TtlMixin):
    def __init__(
        self,
        root: str | os.PathLike[str] | None = None,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = Path(root).resolve() if root is not None else _get_staging_root()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else _ttl_from_env()
        self._clock = clock

    def _user_dir(self, user_id: int) -> Path:
        return self.root / str(_validate_user_id(user_id))

    def _entry_path(self, user_id: int, task_id: str) -> Path:
        return self._user_dir(user_id) / f"{validate_task_id(task_id)}.json"

    def _read(self, path: Path) -> StagingEntry | None:
        """Return the entry at ``path``; unreadable or expired entries read as absent."""

        try:
            entry = StagingEntry.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (UnicodeDecodeError, ValidationError):
            _logger.warning("staging:entry_corrupt path=%s; removing", os.fspath(path))
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            return None
        if self._expired(entry):
            _logger.debug("staging:entry_expired path=%s", os.fspath(path))
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            return None
        return entry

    def put(self, user_id: int, task_id: str, entry: StagingEntry) -> None:
        path = self._entry_path(user_id, task_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Unique tmp name so concurrent puts to one key never share a temp file.
        tmp = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        stamped = self._stamp(entry)
        try:
            tmp.write_text(stamped.model_dump_json(), encoding="utf-8")
            os.replace(tmp, path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise

    def get_many(self, user_id: int, task_ids: Iterable[str]) -> dict[str, StagingEntry]:
        out: dict[str, StagingEntry] = {}
        for task_id in task_ids:
            entry = self._read(self._entry_path(user_id, task_id))
            if entry is not None:
                out[task_id] = entry
        return out

    def delete_many(self, user_id: int, task_ids: Iterable[str]) -> None:
        for task_id in task_ids:
            with contextlib.suppress(FileNotFoundError):
                self._entry_path(user_id, task_id).unlink()

    def task_ids(self, user_id: int) -> list[str]:
        user_dir = self._user_dir(user_id)
        if not user_dir.is_dir():
            return []
        live: list[tuple[float, str]] = []
        for path in user_dir.glob("*.json"):
            if not _TASK_ID_RE.fullmatch(path.stem):
                continue
            entry = self._read(path)
            if entry is not None:
                live.append((entry.created_at, path.stem))
        return [tid for _, tid in sorted(live)]

    def purge_expired(self) -> int:
        if not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.glob("*/*.json"):
            if path.exists() and self._read(path) is None:
                removed += 1
        return removed


def build_staging_store() -> StagingStore:
    """Return the backend selected by ``STATEMENT_INGEST_STAGING_BACKEND``.

    ``file`` (default) or ``memory``.
    """

    backend = (os.getenv("STATEMENT_INGEST_STAGING_BACKEND") or "file").strip().lower()
    if backend == "file":
        return FileStagingStore()
    if backend == "memory":
        return MemoryStagingStore()
    raise ValueError(f"Unknown STATEMENT_INGEST_STAGING_BACKEND: {backend!r}")


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "FileStagingStore",
    "MemoryStagingStore",
    "StagingStore",
    "build_staging_store",
    "validate_task_id",
]
