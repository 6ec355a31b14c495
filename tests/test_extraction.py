# ruff: noqa: E402, I001
import sys
from pathlib import Path
from typing import Any

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

import statement_ingest.extraction as extraction_mod
from statement_ingest.errors import ExtractionError
from statement_ingest.extraction import (
    build_user_content,
    extract_pdf_text,
    request_completion,
)
from statement_ingest.models import CategoryRef

from tests.helpers.openai_stub import OpenAIStub, StubAPIError

CATEGORIES = [CategoryRef(id=1, title="Food"), CategoryRef(id=2, title="Transport")]


@pytest.fixture(autouse=True)
def _no_backoff_sleep(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    sleeps: list[int] = []
    monkeypatch.setattr(extraction_mod, "_sleep_backoff", sleeps.append)
    return sleeps


def test_user_content_lists_banks_categories_and_text():
    content = build_user_content("DBS STATEMENT\nCOFFEE 4.50", CATEGORIES)

    assert "DBS, CITI, CIMB, UOB, HSBC" in content
    assert "Food; Transport" in content
    assert content.endswith("BEGIN_STATEMENT_TEXT\nDBS STATEMENT\nCOFFEE 4.50\nEND_STATEMENT_TEXT")


def test_request_completion_sends_one_request(monkeypatch: pytest.MonkeyPatch):
    calls: list[dict[str, Any]] = []
    stub = OpenAIStub(lambda text: f"BANK,DBS\n{text},1.00,2024-01-01,", calls_out=calls)

    out = request_completion("Coffee", CATEGORIES, client=stub)

    assert out == "BANK,DBS\nCoffee,1.00,2024-01-01,"
    assert len(calls) == 1
    assert calls[0]["model"] == "gpt-4o"
    assert calls[0]["temperature"] == pytest.approx(0.1)
    assert "expense reader" in calls[0]["instructions"]


def test_model_can_come_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STATEMENT_INGEST_MODEL", "gpt-4o-mini")
    calls: list[dict[str, Any]] = []
    request_completion("x", [], client=OpenAIStub(lambda t: "ok", calls_out=calls))
    assert calls[0]["model"] == "gpt-4o-mini"


def test_rate_limits_are_retried(_no_backoff_sleep):
    stub = OpenAIStub(lambda t: "done", failures=[StubAPIError(429), StubAPIError(503)])

    assert request_completion("x", CATEGORIES, client=stub) == "done"
    assert len(stub.calls) == 3
    assert _no_backoff_sleep == [1, 2]


def test_retries_give_up_after_three_attempts():
    stub = OpenAIStub(lambda t: "never", failures=[StubAPIError(500)] * 3)

    with pytest.raises(ExtractionError, match="completion request failed"):
        request_completion("x", CATEGORIES, client=stub)
    assert len(stub.calls) == 3


def test_client_errors_are_not_retried():
    stub = OpenAIStub(lambda t: "never", failures=[StubAPIError(400)])

    with pytest.raises(ExtractionError):
        request_completion("x", CATEGORIES, client=stub)
    assert len(stub.calls) == 1


def test_empty_output_is_an_error():
    with pytest.raises(ExtractionError, match="no text"):
        request_completion("x", CATEGORIES, client=OpenAIStub(lambda t: "   "))


def test_extract_pdf_text_rejects_non_pdf_bytes():
    with pytest.raises(ExtractionError, match="could not read PDF"):
        extract_pdf_text(b"definitely not a pdf")
