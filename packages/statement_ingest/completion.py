"""Parse raw model completion text into a statement header and candidate expenses.

Input format (one statement's worth, comma-delimited, fields trimmed)::

    BANK,DBS,2024-01-15
    Coffee Shop,4.50,2024-01-10,Food
    Taxi,12.00,2024-01-12,Transport

Header lines start with ``BANK`` (``BANK,<bank>[,<date>]``) or ``DATE`` /
``STATEMENT DATE`` (``DATE,<date>``). Every other non-blank line is an
expense: ``description, amount, date[, category label]``. Lines are read
with :mod:`csv`, so a description or amount containing commas must be quoted
(``"ACME, Inc","1,234.50",2024-01-10,Rent``). A header line that does not
have a header's shape (``Bank,5.00,2024-01-10,Fees``) is read as an expense.

Parsing is tolerant: a line that cannot be read (wrong field count, amount
that is not a finite two-decimal number, unreadable date, blank description)
is skipped and logged at DEBUG. The parse as a whole never fails.
"""

from __future__ import annotations

import csv
import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from .categories import resolve_category
from .logging_setup import get_logger
from .models import KNOWN_BANKS, CandidateExpense, CategoryLike, ParsedStatement

_logger = get_logger("statement_ingest.completion")

_CENT = Decimal("0.01")

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %y",
)

_BANK_HEADER_KEYS = frozenset({"BANK"})
_DATE_HEADER_KEYS = frozenset({"DATE", "STATEMENT DATE", "STATEMENT_DATE"})

# Currency prefixes/suffixes the model sometimes leaves on amounts.
_CURRENCY_RE = re.compile(r"^(?:[A-Z]{3}|S?\$|RM)\s*|\s*(?:[A-Z]{3})$")
_FENCE_RE = re.compile(r"^```")
_FIXED_POINT_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def _clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def parse_amount(raw: object) -> Decimal | None:
    """Return ``raw`` as a two-decimal ``Decimal`` or ``None`` when unreadable.

    Accepts numbers and strings with an optional currency marker and thousands
    separators. Only plain fixed-point notation is read: NaN, infinity and
    exponents are rejected, as are values with more than two significant
    fractional digits. Amounts are taken exactly, never rounded.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        d = raw
    else:
        s = _CURRENCY_RE.sub("", str(raw).strip().upper()).replace(",", "").replace(" ", "")
        if not _FIXED_POINT_RE.fullmatch(s):
            return None
        try:
            d = Decimal(s)
        except (InvalidOperation, ValueError):
            return None
    if not d.is_finite():
        return None
    try:
        quantized = d.quantize(_CENT)
    except InvalidOperation:
        return None
    if quantized != d:
        return None
    return quantized


def parse_date(raw: str | None) -> date | None:
    """Return the first successful parse of ``raw`` against the known formats."""

    if raw is None:
        return None
    s = _clean_text(raw)
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def normalize_bank(raw: str | None) -> str | None:
    """Return the canonical bank code, or ``None`` when it is not a known bank."""

    if raw is None:
        return None
    s = _clean_text(raw).upper()
    return s if s in KNOWN_BANKS else None


def _split_fields(line: str) -> list[str] | None:
    """Split one line as CSV; ``None`` when the quoting cannot be read."""

    try:
        row = next(csv.reader([line], skipinitialspace=True, strict=True), [])
    except csv.Error:
        return None
    return [_clean_text(f) for f in row]


def _parse_expense_fields(fields: Sequence[str]) -> tuple[str, str, date, str | None] | None:
    """Return ``(description, raw_amount, date, label)`` for a 3- or 4-field line."""

    if len(fields) not in (3, 4):
        return None
    description, raw_amount, raw_date = fields[:3]
    expense_date = parse_date(raw_date)
    if expense_date is None:
        return None
    label = fields[3] if len(fields) == 4 else ""
    return description, raw_amount, expense_date, label or None


def _is_bank_header(fields: Sequence[str]) -> bool:
    # ``BANK,<bank>[,<date>]``; an amount in the second field makes it an expense.
    if fields[0].upper() not in _BANK_HEADER_KEYS or len(fields) > 3:
        return False
    return len(fields) < 2 or parse_amount(fields[1]) is None


def _is_date_header(fields: Sequence[str]) -> bool:
    return fields[0].upper() in _DATE_HEADER_KEYS and len(fields) <= 2


def _iter_lines(text: str) -> Iterable[tuple[int, str]]:
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or _FENCE_RE.match(line):
            continue
        yield lineno, line


def parse_completion(
    text: str,
    categories: Sequence[CategoryLike] = (),
) -> tuple[ParsedStatement, list[CandidateExpense]]:
    """Parse ``text`` into ``(ParsedStatement, candidates)``.

    Candidates keep source order and are also carried on the returned
    statement. ``bank`` is ``None`` unless a header names one of
    ``KNOWN_BANKS``; ``statement_date`` is ``None`` unless a header carries a
    readable date (the commit step substitutes defaults).
    """

    bank: str | None = None
    statement_date: date | None = None
    candidates: list[CandidateExpense] = []
    skipped = 0

    for lineno, line in _iter_lines(text or ""):
        fields = _split_fields(line)
        if fields is None:
            skipped += 1
            _logger.debug("completion:line_bad_quoting lineno=%d", lineno)
            continue

        if _is_bank_header(fields):
            if bank is None and len(fields) > 1:
                bank = normalize_bank(fields[1])
            if statement_date is None and len(fields) > 2:
                statement_date = parse_date(fields[2])
            continue
        if _is_date_header(fields):
            if statement_date is None and len(fields) > 1:
                statement_date = parse_date(fields[1])
            continue

        located = _parse_expense_fields(fields)
        if located is None:
            skipped += 1
            _logger.debug("completion:line_malformed lineno=%d fields=%d", lineno, len(fields))
            continue
        description, raw_amount, expense_date, label = located
        if not description:
            skipped += 1
            _logger.debug("completion:line_no_description lineno=%d", lineno)
            continue
        amount = parse_amount(raw_amount)
        if amount is None:
            skipped += 1
            _logger.debug("completion:line_invalid_amount lineno=%d amount=%r", lineno, raw_amount)
            continue

        candidates.append(
            CandidateExpense(
                description=description,
                amount=amount,
                date=expense_date,
                category_label=label,
                category_id=resolve_category(label, categories),
            )
        )

    _logger.debug(
        "completion:parsed bank=%s statement_date=%s expenses=%d skipped=%d",
        bank,
        statement_date,
        len(candidates),
        skipped,
    )
    statement = ParsedStatement(
        bank=bank,
        statement_date=statement_date,
        expenses=tuple(candidates),
    )
    return statement, candidates


__all__ = [
    "normalize_bank",
    "parse_amount",
    "parse_completion",
    "parse_date",
]
