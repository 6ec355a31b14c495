"""Statement text extraction and the model call that produces completion text.

Public API:
    - :func:`extract_pdf_text`
    - :func:`build_system_instructions` / :func:`build_user_content`
    - :func:`request_completion`

The model is asked for the line format understood by
:mod:`statement_ingest.completion`; nothing here interprets the answer. No
side effects occur at import time (no client creation, no environment reads).
"""

from __future__ import annotations

import io
import os
import random
import time
from collections.abc import Sequence
from typing import Any

import pdfplumber
from openai import OpenAI

from .errors import ExtractionError
from .logging_setup import get_logger
from .models import KNOWN_BANKS, CategoryLike

# ---- Tunables (private) ------------------------------------------------------

_DEFAULT_MODEL: str = "gpt-4o"
_TEMPERATURE: float = 0.1
_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

BEGIN = "BEGIN_STATEMENT_TEXT\n"
END = "\nEND_STATEMENT_TEXT"

_logger = get_logger("statement_ingest.extraction")


# ---- PDF text ----------------------------------------------------------------


def extract_pdf_text(data: bytes) -> str:
    """Return the text of every page in the PDF ``data``, pages separated by newlines.

    Raises :class:`ExtractionError` when the bytes are not a readable PDF or
    contain no extractable text (e.g. scanned images without OCR).
    """

    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:  # noqa: BLE001 - pdfminer raises a wide variety of types
        raise ExtractionError(f"could not read PDF: {e}") from e

    text = "\n".join(p for p in pages if p.strip())
    if not text.strip():
        raise ExtractionError("PDF contains no extractable text")
    _logger.debug("extraction:pdf_text pages=%d chars=%d", len(pages), len(text))
    return text


# ---- Prompts -----------------------------------------------------------------


def build_system_instructions() -> str:
    return (
        "You are an expense reader. Extract every expense line item from the provided "
        "financial statement text and categorise it using only the user's categories. "
        "Never invent categories. Output plain text lines only, no commentary."
    )


def build_user_content(statement_text: str, categories: Sequence[CategoryLike]) -> str:
    """Build the user prompt: output format, bank list, categories, then the text.

    The statement text is delimited by ``BEGIN_``/``END_`` markers so stubs and
    logs can find it.
    """

    titles = list(dict.fromkeys(c.title.strip() for c in categories if c.title.strip()))
    lines: list[str] = [
        "Read the statement below and answer in this exact comma-separated format:",
        "- First line: BANK,<bank>,<statement date as YYYY-MM-DD>",
        f"  where <bank> is one of: {', '.join(KNOWN_BANKS)} (use No when none apply).",
        "- Then one line per expense: <description>,<amount>,<date as YYYY-MM-DD>,<category>",
        "- Amounts are plain numbers with two decimals: no currency symbols, no thousands "
        "separators. Refunds and credits are negative.",
        "- Wrap a description that contains a comma in double quotes.",
    ]
    if titles:
        lines.append(
            "- <category> must be one of the following, or left empty when none fits: "
            + "; ".join(titles)
        )
    else:
        lines.append("- Leave <category> empty.")
    lines.append("")
    return "\n".join(lines) + "\n" + BEGIN + statement_text + END


# ---- Model call --------------------------------------------------------------


def _create_client() -> OpenAI:
    return OpenAI()


def _resolve_model(model: str | None) -> str:
    if model:
        return model
    env_model = os.getenv("STATEMENT_INGEST_MODEL")
    return env_model.strip() if env_model and env_model.strip() else _DEFAULT_MODEL


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _response_text(resp: Any) -> str:
    """Return the text output of a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            text = txt_obj if isinstance(txt_obj, str) else getattr(txt_obj, "value", None)
    if not isinstance(text, str) or not text.strip():
        raise ExtractionError("model returned no text output")
    return text


def request_completion(
    statement_text: str,
    categories: Sequence[CategoryLike],
    *,
    model: str | None = None,
    client: OpenAI | None = None,
) -> str:
    """Ask the model to list the statement's expenses; return the raw completion.

    Retries HTTP 429/5xx up to three attempts with jittered backoff. Other
    failures raise :class:`ExtractionError` immediately.
    """

    model_name = _resolve_model(model)
    instructions = build_system_instructions()
    user_content = build_user_content(statement_text, categories)
    api = client if client is not None else _create_client()

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = api.responses.create(
                model=model_name,
                instructions=instructions,
                input=user_content,
                temperature=_TEMPERATURE,
            )
            text = _response_text(resp)
        except ExtractionError:
            raise
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                _logger.error(
                    "extraction:request_failed model=%s latency_ms=%.2f error=%s attempt=%d",
                    model_name,
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                raise ExtractionError(f"completion request failed: {e}") from e
            _logger.warning(
                "extraction:request_retry model=%s latency_ms=%.2f error=%s attempt=%d",
                model_name,
                dt_ms,
                e.__class__.__name__,
                attempt,
            )
            _sleep_backoff(attempt)
            attempt += 1
            continue

        _logger.info(
            "extraction:request_done model=%s chars=%d latency_ms=%.2f",
            model_name,
            len(text),
            (time.perf_counter() - t0) * 1000.0,
        )
        return text


__all__ = [
    "BEGIN",
    "END",
    "build_system_instructions",
    "build_user_content",
    "extract_pdf_text",
    "request_completion",
]
