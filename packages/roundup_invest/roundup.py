"""Round-up and fee calculator.

Pure functions only: no I/O, no settings lookups. The fee rate and the
owner's default round-up are passed in by the caller, who loads them once per
batch.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .models import RoundUpQuote

CENT = Decimal("0.01")
DEFAULT_ROUND_UP = Decimal("1.00")
DEFAULT_FEE_RATE = Decimal("0.025")
# Largest magnitude a Numeric(18, 2) column holds
MAX_AMOUNT = Decimal("9999999999999999.99")


def quantize_cents(value: Decimal) -> Decimal:
    """Round to cents (half up); raises ``ValueError`` outside the storable range."""

    try:
        cents = value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"amount out of range: {value}") from e
    if abs(cents) > MAX_AMOUNT:
        raise ValueError(f"amount out of range: {value}")
    return cents


def to_decimal(raw: Any, *, name: str = "value") -> Decimal:
    """Coerce ``raw`` to a finite ``Decimal``; floats go through ``str``."""

    if isinstance(raw, Decimal):
        value = raw
    else:
        try:
            value = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"{name} must be a number; got {raw!r}") from e
    if not value.is_finite():
        raise ValueError(f"{name} must be finite; got {raw!r}")
    return value


def calculate_round_up(
    amount: Any,
    *,
    default_round_up: Any = DEFAULT_ROUND_UP,
    fee_rate: Any = DEFAULT_FEE_RATE,
    multiplier: Any = 1,
) -> RoundUpQuote:
    """Return the round-up, fee and net investable amount for a purchase.

    The amount is rounded to cents before the ceiling test so inputs such as
    ``4.999999`` are treated as ``5.00`` (whole) rather than producing a
    spurious sub-cent round-up. Whole amounts use ``default_round_up``. An
    optional positive ``multiplier`` scales the round-up before the fee is
    taken.

    Raises ``ValueError`` for non-positive amounts, a non-positive default,
    a fee rate outside ``[0, 1]``, a non-positive multiplier or a multiplier
    so small that the round-up rounds to zero.
    """

    a = quantize_cents(to_decimal(amount, name="amount"))
    if a <= 0:
        raise ValueError(f"amount must be positive; got {amount!r}")
    default = quantize_cents(to_decimal(default_round_up, name="default_round_up"))
    if default <= 0:
        raise ValueError(f"default_round_up must be positive; got {default_round_up!r}")
    rate = to_decimal(fee_rate, name="fee_rate")
    if not (0 <= rate <= 1):
        raise ValueError(f"fee_rate must be within [0, 1]; got {fee_rate!r}")
    m = to_decimal(multiplier, name="multiplier")
    if m <= 0:
        raise ValueError(f"multiplier must be positive; got {multiplier!r}")

    raw = a.to_integral_value(rounding=ROUND_CEILING) - a
    base = default if raw == 0 else raw
    round_up = quantize_cents(base * m)
    if round_up <= 0:
        raise ValueError(f"multiplier {multiplier!r} leaves no round-up for {amount!r}")
    fee = quantize_cents(round_up * rate)
    return RoundUpQuote(round_up=round_up, fee=fee, net=round_up - fee)


__all__ = [
    "CENT",
    "DEFAULT_FEE_RATE",
    "DEFAULT_ROUND_UP",
    "MAX_AMOUNT",
    "calculate_round_up",
    "quantize_cents",
    "to_decimal",
]
