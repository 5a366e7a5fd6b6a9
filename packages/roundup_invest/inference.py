"""Merchant-to-ticker inference against an OpenAI-compatible endpoint.

Public API:
    - :func:`infer_ticker`
    - :func:`parse_inference_reply`

A single call per merchant with a bounded timeout and no inline retries: a
timeout, transport error, malformed or non-JSON reply all produce an
:class:`InferenceAttempt` with ``error`` set. Nothing here raises to the
caller and nothing here writes to the database; the resolver hands each
attempt to an audit writer.
"""

from __future__ import annotations

import json
import os
import re
import time
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from . import prompting
from .errors import InferenceError
from .logging_setup import get_logger
from .models import InferenceReply

_TEMPERATURE: float = 0.1

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")

_logger = get_logger("roundup_invest.inference")


@dataclass(frozen=True, slots=True)
class InferenceAttempt:
    """Everything the audit log records about one inference call."""

    merchant: str
    category: str | None
    prompt: str
    model: str
    latency_ms: int
    raw_response: str | None = None
    reply: InferenceReply | None = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None or self.reply is None


def _create_client(*, timeout: float) -> OpenAI:
    # Point ROUNDUP_LLM_BASE_URL at any OpenAI-compatible endpoint; the key
    # falls back to OPENAI_API_KEY when ROUNDUP_LLM_API_KEY is unset.
    return OpenAI(
        api_key=os.getenv("ROUNDUP_LLM_API_KEY") or None,
        base_url=os.getenv("ROUNDUP_LLM_BASE_URL") or None,
        timeout=timeout,
        max_retries=0,
    )


def _strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def _extract_message_text(resp: Any) -> str:
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as e:
        raise InferenceError("Unexpected chat completion shape; no message content") from e
    if not isinstance(content, str) or not content.strip():
        raise InferenceError("Inference reply was empty")
    return content


def parse_inference_reply(text: str) -> InferenceReply:
    """Decode and validate a reply body, tolerating Markdown code fences.

    Raises ``InferenceError`` for non-JSON text and pydantic's
    ``ValidationError`` (a ``ValueError``) for JSON with the wrong shape.
    """

    body = _strip_code_fences(text)
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as e:
        raise InferenceError("Model output was not valid JSON") from e
    if not isinstance(decoded, dict):
        raise InferenceError("Model output was not a JSON object")
    return InferenceReply.model_validate(decoded)


def infer_ticker(
    merchant: str,
    category: str | None = None,
    *,
    model: str,
    timeout_s: float,
) -> InferenceAttempt:
    """Ask the endpoint for a ticker; always returns an attempt record."""

    messages = prompting.build_messages(merchant, category)
    prompt = prompting.build_user_content(merchant, category)
    raw: str | None = None
    t0 = time.perf_counter()
    try:
        client = _create_client(timeout=timeout_s)
        resp = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=_TEMPERATURE,
            response_format=prompting.build_response_format(),
            timeout=timeout_s,
        )
        raw = _extract_message_text(resp)
        reply = parse_inference_reply(raw)
    except Exception as e:  # noqa: BLE001
        latency_ms = int((time.perf_counter() - t0) * 1000)
        _logger.warning(
            "inference:failed merchant=%r latency_ms=%d error=%s",
            merchant,
            latency_ms,
            e.__class__.__name__,
        )
        return InferenceAttempt(
            merchant=merchant,
            category=category,
            prompt=prompt,
            model=model,
            latency_ms=latency_ms,
            raw_response=raw,
            error=f"{e.__class__.__name__}: {e}",
        )

    latency_ms = int((time.perf_counter() - t0) * 1000)
    _logger.info(
        "inference:done merchant=%r ticker=%s confidence=%.2f latency_ms=%d",
        merchant,
        reply.ticker,
        reply.confidence,
        latency_ms,
    )
    return InferenceAttempt(
        merchant=merchant,
        category=category,
        prompt=prompt,
        model=model,
        latency_ms=latency_ms,
        raw_response=raw,
        reply=reply,
    )


__all__ = ["InferenceAttempt", "infer_ticker", "parse_inference_reply"]
