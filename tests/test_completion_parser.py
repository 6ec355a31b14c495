# ruff: noqa: E402, I001
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `statement_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from statement_ingest.completion import parse_amount, parse_completion, parse_date
from statement_ingest.models import CategoryRef

CATEGORIES = (CategoryRef(id=1, title="Food"), CategoryRef(id=2, title="Transport"))


def test_dbs_statement_drops_unparseable_amount():
    text = (
        "BANK,DBS,2024-01-15\n"
        "Coffee Shop,4.50,2024-01-10,Food\n"
        "Bad Row,not-a-number,2024-01-11,Food\n"
        "Taxi,12.00,2024-01-12,Transport\n"
    )

    statement, candidates = parse_completion(text, CATEGORIES)

    assert statement.bank == "DBS"
    assert statement.statement_date == date(2024, 1, 15)
    assert [(c.description, c.amount, c.category_id) for c in candidates] == [
        ("Coffee Shop", Decimal("4.50"), 1),
        ("Taxi", Decimal("12.00"), 2),
    ]
    assert statement.expenses == tuple(candidates)
    assert statement.total_amount == Decimal("16.50")


def test_candidates_keep_source_order():
    lines = [f"Item {i},{i}.25,2024-02-{i:02d}," for i in range(1, 11)]
    _, candidates = parse_completion("\n".join(lines))

    assert [c.description for c in candidates] == [f"Item {i}" for i in range(1, 11)]
    assert [c.date.day for c in candidates] == list(range(1, 11))


@pytest.mark.parametrize(
    "raw", ["NaN", "nan", "Infinity", "-inf", "1E+2", "1e2", "", "4.505", "abc", None]
)
def test_parse_amount_rejects_non_finite_and_unreadable(raw):
    assert parse_amount(raw) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("4.5", Decimal("4.50")),
        ("1,234.56", Decimal("1234.56")),
        ("SGD 12.00", Decimal("12.00")),
        ("$7", Decimal("7.00")),
        ("-3.10", Decimal("-3.10")),
        (Decimal("0.10"), Decimal("0.10")),
    ],
)
def test_parse_amount_is_exact_to_two_decimals(raw, expected):
    got = parse_amount(raw)
    assert got == expected
    assert got.as_tuple().exponent == -2


def test_nan_amount_line_is_dropped():
    text = "Lunch,NaN,2024-03-01,Food\nDinner,20.00,2024-03-01,Food"
    _, candidates = parse_completion(text, CATEGORIES)
    assert [c.description for c in candidates] == ["Dinner"]


def test_line_with_extra_fields_is_skipped():
    text = "Rent,1,234.50,2024-01-10,Housing\nBook,15.00,2024-01-03,Food"
    _, candidates = parse_completion(text, CATEGORIES)

    assert [c.description for c in candidates] == ["Book"]


def test_quoted_fields_may_contain_commas():
    text = '"ACME, Inc, Singapore","1,234.50",2024-04-02,Transport'
    _, candidates = parse_completion(text, CATEGORIES)

    (expense,) = candidates
    assert expense.description == "ACME, Inc, Singapore"
    assert expense.amount == Decimal("1234.50")
    assert expense.category_id == 2


def test_header_keyword_without_header_shape_is_an_expense():
    text = "Bank,5.00,2024-01-10,Fees\nDate,2024-01-11,2024-01-11\nBANK,DBS,2024-01-15"
    statement, candidates = parse_completion(text, CATEGORIES)

    assert statement.bank == "DBS"
    assert statement.statement_date == date(2024, 1, 15)
    assert [(c.description, c.amount, c.category_label) for c in candidates] == [
        ("Bank", Decimal("5.00"), "Fees"),
    ]


def test_line_without_label_has_no_category():
    _, candidates = parse_completion("Parking,3.00,2024-04-02", CATEGORIES)

    assert candidates[0].category_label is None
    assert candidates[0].category_id is None


def test_unknown_label_is_kept_but_unresolved():
    _, candidates = parse_completion("Gym,80.00,2024-04-02,Fitness", CATEGORIES)

    assert candidates[0].category_label == "Fitness"
    assert candidates[0].category_id is None


def test_malformed_lines_and_code_fences_are_skipped():
    text = "```\nBANK,UOB\njust some prose\n,5.00,2024-01-01,Food\nBook,15.00,2024-01-03,\n```"
    statement, candidates = parse_completion(text, CATEGORIES)

    assert statement.bank == "UOB"
    assert statement.statement_date is None
    assert [c.description for c in candidates] == ["Book"]


def test_unknown_bank_and_separate_date_header():
    text = "BANK,Some Credit Union\nSTATEMENT DATE,31/01/2024\nBook,15.00,2024-01-03,Food"
    statement, _ = parse_completion(text, CATEGORIES)

    assert statement.bank is None
    assert statement.statement_date == date(2024, 1, 31)


def test_first_header_value_wins():
    text = "BANK,citi,2024-05-01\nBANK,HSBC,2024-06-01\nDATE,2024-07-01"
    statement, candidates = parse_completion(text)

    assert statement.bank == "CITI"
    assert statement.statement_date == date(2024, 5, 1)
    assert candidates == []


def test_empty_completion_yields_empty_statement():
    statement, candidates = parse_completion("")

    assert statement.bank is None
    assert statement.expenses == ()
    assert candidates == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-15", date(2024, 1, 15)),
        ("15/01/2024", date(2024, 1, 15)),
        ("15 Jan 2024", date(2024, 1, 15)),
        ("15 January 2024", date(2024, 1, 15)),
        ("2024-13-01", None),
        ("yesterday", None),
    ],
)
def test_parse_date_formats(raw, expected):
    assert parse_date(raw) == expected
