"""Prompt construction for merchant-to-ticker inference.

The endpoint is an OpenAI-compatible Chat Completions API. The prompt asks
for a single JSON object; the reply is validated by
:class:`roundup_invest.models.InferenceReply`.
"""

from __future__ import annotations

from openai.types.chat import ChatCompletionMessageParam
from openai.types.shared_params import ResponseFormatJSONObject


def build_system_instructions() -> str:
    return "You are a financial analyst. Respond only with valid JSON, no markdown or extra text."


def build_user_content(merchant_name: str, category: str | None = None) -> str:
    """Render the per-merchant question.

    The category hint is appended in parentheses when present; it narrows
    ambiguous names (e.g. "Delta" as an airline vs. a faucet brand).
    """

    category_context = f" (category: {category})" if category else ""
    return (
        f"Given the merchant name '{merchant_name}'{category_context}, determine the most "
        "appropriate publicly traded stock ticker symbol. Return JSON: "
        '{ "ticker": string, "company_name": string, "confidence": number (0-1), '
        '"reasoning": string }'
    )


def build_messages(
    merchant_name: str, category: str | None = None
) -> list[ChatCompletionMessageParam]:
    return [
        {"role": "system", "content": build_system_instructions()},
        {"role": "user", "content": build_user_content(merchant_name, category)},
    ]


def build_response_format() -> ResponseFormatJSONObject:
    return {"type": "json_object"}


__all__ = [
    "build_messages",
    "build_response_format",
    "build_system_instructions",
    "build_user_content",
]
