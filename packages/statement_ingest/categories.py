"""Category matching and small category service operations.

Exports
-------
- ``resolve_category(label, categories)``: map a free-text label emitted by
  the parsing model to one of the user's category ids. Pure; never touches
  storage.
- ``load_categories(session, user_id)``: read the user's categories as
  ``CategoryRef`` values for callers that then hand them to the parser.
- ``create_category(...)``: idempotent, case-insensitive category creation.
- ``normalize_name(...)`` / ``validate_name(...)``: shared name helpers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from db.models.ledger import Category
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import CategoryLike, CategoryRef

# ---------------------------
# Name normalization/validation
# ---------------------------

_ALLOWED_RE = re.compile(r"^[\w &\-/'.]+$")
_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name``.

    Does not change case; matching folds case separately.
    """

    return " ".join(name.strip().split())


def _match_key(name: str) -> str:
    return normalize_name(name).casefold()


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Validate a category title: length 1..64 and a conservative character set."""

    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return NameValidation(False, "Only letters, numbers, spaces, and & - / ' . are allowed")
    return NameValidation(True, None)


# ---------------------------
# Matching
# ---------------------------


def resolve_category(label: str | None, categories: Iterable[CategoryLike]) -> int | None:
    """Return the id of the first category whose title matches ``label``.

    Matching is exact after trimming, collapsing internal whitespace and
    case-folding both sides. Duplicated titles resolve to the first one in
    ``categories`` order. A missing/blank label or no match yields ``None``;
    a category is never invented.
    """

    if label is None:
        return None
    key = _match_key(label)
    if not key:
        return None
    for category in categories:
        title = getattr(category, "title", None)
        if isinstance(title, str) and _match_key(title) == key:
            return category.id
    return None


# ---------------------------
# Storage-backed helpers (callers own the session scope)
# ---------------------------


def _to_ref(row: Category) -> CategoryRef:
    return CategoryRef(id=row.id, title=row.title, color=row.color, user_id=row.user_id)


def load_categories(session: Session, user_id: int) -> list[CategoryRef]:
    """Return the user's categories ordered by id (stable first-match order)."""

    rows = (
        session.execute(select(Category).where(Category.user_id == user_id).order_by(Category.id))
        .scalars()
        .all()
    )
    return [_to_ref(r) for r in rows]


def create_category(
    session: Session,
    *,
    user_id: int,
    title: str,
    color: str | None = None,
) -> tuple[CategoryRef, bool]:
    """Create a category for ``user_id`` unless one with the same title exists.

    Returns ``(category, created)``. An existing title (case-insensitive)
    returns that row with ``created=False``. Raises ``ValueError`` for invalid
    titles or colours.
    """

    title_n = normalize_name(title)
    v = validate_name(title_n)
    if not v.ok:
        raise ValueError(f"Invalid category title: {v.reason}")
    if color is not None and not _HEX_COLOR_RE.match(color):
        raise ValueError(f"Invalid category color: {color!r} (expected #RRGGBB)")

    existing = (
        session.execute(
            select(Category)
            .where(
                Category.user_id == user_id,
                func.lower(Category.title) == title_n.lower(),
            )
            .order_by(Category.id)
        )
        .scalars()
        .first()
    )
    if existing is not None:
        return _to_ref(existing), False

    row = Category(title=title_n, color=color, user_id=user_id)
    session.add(row)
    session.flush()
    return _to_ref(row), True


__all__ = [
    "NameValidation",
    "create_category",
    "load_categories",
    "normalize_name",
    "resolve_category",
    "validate_name",
]
