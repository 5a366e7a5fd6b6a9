from __future__ import annotations

import pydantic
import pytest

import roundup_invest.inference as inference_mod
from roundup_invest.errors import InferenceError
from roundup_invest.inference import infer_ticker, parse_inference_reply
from roundup_invest.prompting import build_user_content

from tests.helpers.llm_stub import make_openai_stub, ticker_reply


def test_parse_plain_json_reply():
    reply = parse_inference_reply(
        '{"ticker": "sbux", "company_name": "Starbucks Corporation", "confidence": 0.95}'
    )
    assert reply.ticker == "SBUX"
    assert reply.company_name == "Starbucks Corporation"
    assert reply.confidence == 0.95
    assert reply.reasoning == ""


def test_parse_tolerates_markdown_fences():
    text = '```json\n{"ticker": "AMZN", "company_name": "Amazon", "confidence": 1}\n```'
    assert parse_inference_reply(text).ticker == "AMZN"


@pytest.mark.parametrize("text", ["not json", "[1, 2]", "```\n```"])
def test_parse_rejects_non_object_text(text: str):
    with pytest.raises(InferenceError):
        parse_inference_reply(text)


@pytest.mark.parametrize(
    "text",
    [
        '{"ticker": "AMZN", "confidence": 0.9}',
        '{"ticker": "AMZN", "company_name": "Amazon", "confidence": 1.5}',
        '{"ticker": "NOT A TICKER", "company_name": "x", "confidence": 0.5}',
    ],
)
def test_parse_rejects_wrong_shape(text: str):
    with pytest.raises(pydantic.ValidationError):
        parse_inference_reply(text)


def test_user_content_includes_category_hint():
    assert build_user_content("Delta", "Travel").startswith(
        "Given the merchant name 'Delta' (category: Travel), determine"
    )
    assert "(category:" not in build_user_content("Delta")


def test_infer_ticker_sends_json_mode_request(monkeypatch):
    calls: list[dict] = []
    monkeypatch.setattr(
        inference_mod,
        "OpenAI",
        make_openai_stub(lambda m: ticker_reply("SBUX", 0.97, "Starbucks"), calls),
    )

    attempt = infer_ticker("Starbucks", "Coffee", model="m-test", timeout_s=2.5)

    assert attempt.is_error is False
    assert attempt.reply is not None and attempt.reply.ticker == "SBUX"
    assert attempt.model == "m-test"
    assert attempt.raw_response is not None
    (call,) = calls
    assert call["merchant"] == "Starbucks"
    assert call["category"] == "Coffee"
    assert call["model"] == "m-test"
    assert call["temperature"] == 0.1
    assert call["response_format"] == {"type": "json_object"}
    assert call["timeout"] == 2.5
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


def test_infer_ticker_reports_transport_errors(_offline_inference):
    attempt = infer_ticker("Starbucks", model="m", timeout_s=1)

    assert attempt.is_error is True
    assert attempt.reply is None
    assert attempt.raw_response is None
    assert attempt.error is not None and attempt.error.startswith("ConnectionError")
    assert len(_offline_inference) == 1


def test_infer_ticker_keeps_raw_text_of_malformed_reply(monkeypatch):
    monkeypatch.setattr(inference_mod, "OpenAI", make_openai_stub(lambda m: "I think SBUX"))

    attempt = infer_ticker("Starbucks", model="m", timeout_s=1)

    assert attempt.is_error is True
    assert attempt.raw_response == "I think SBUX"
    assert attempt.error is not None and attempt.error.startswith("InferenceError")
