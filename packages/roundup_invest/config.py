"""Pipeline configuration, loaded once per batch and passed explicitly.

Platform-wide knobs (fee rate, auto-approval switch and threshold) live in the
``ri_platform_settings`` key/value table so operators can change them without
a deploy. Process-level knobs (inference timeout, model, batch sizing) come
from ``ROUNDUP_*`` environment variables. Callers build one
:class:`PipelineConfig` at the start of a batch via
:func:`load_pipeline_config` and hand it to the calculator and resolver; no
component re-reads settings per row.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from roundup_db.models.roundup import RiPlatformSetting

from .logging_setup import get_logger

_logger = get_logger("roundup_invest.config")

# Setting keys in ri_platform_settings
FEE_RATE_KEY = "platform_fee_rate"
AUTO_APPROVAL_ENABLED_KEY = "auto_approval_enabled"
AUTO_APPROVAL_THRESHOLD_KEY = "auto_approval_threshold"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable knobs for one batch run."""

    fee_rate: Decimal = Decimal("0.025")
    auto_approval_enabled: bool = False
    auto_approval_threshold: Decimal = Decimal("0.90")
    inference_timeout_s: float = 8.0
    model: str = "deepseek-chat"
    batch_size: int = 500
    max_row_errors: int = 50

    def __post_init__(self) -> None:
        if not (Decimal(0) <= self.fee_rate <= Decimal(1)):
            raise ValueError(f"fee_rate must be within [0, 1]; got {self.fee_rate}")
        if not (Decimal(0) <= self.auto_approval_threshold <= Decimal(1)):
            raise ValueError(
                f"auto_approval_threshold must be within [0, 1]; got {self.auto_approval_threshold}"
            )
        if not (0 < self.inference_timeout_s <= 30):
            raise ValueError(
                f"inference_timeout_s must be within (0, 30]; got {self.inference_timeout_s}"
            )
        if self.batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if self.max_row_errors < 0:
            raise ValueError("max_row_errors must be >= 0")
        if not self.model.strip():
            raise ValueError("model must be a non-empty string")

    def approves(self, confidence: Decimal) -> bool:
        """Return True when a fresh mapping with ``confidence`` is auto-approved."""

        return self.auto_approval_enabled and confidence >= self.auto_approval_threshold


def _parse_decimal(raw: str | None, *, key: str, default: Decimal) -> Decimal:
    if raw is None:
        return default
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, ValueError):
        _logger.warning("config:bad_value key=%s value=%r using_default=%s", key, raw, default)
        return default
    if not value.is_finite():
        _logger.warning("config:bad_value key=%s value=%r using_default=%s", key, raw, default)
        return default
    return value


def _parse_bool(raw: str | None, *, key: str, default: bool) -> bool:
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    _logger.warning("config:bad_value key=%s value=%r using_default=%s", key, raw, default)
    return default


def _parse_number(env: Mapping[str, str], name: str, cast: type, default: int | float) -> Any:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        _logger.warning("config:bad_env name=%s value=%r using_default=%s", name, raw, default)
        return default


def read_platform_settings(session: Session) -> dict[str, str]:
    rows = session.execute(select(RiPlatformSetting.key, RiPlatformSetting.value)).all()
    return {k: v for k, v in rows}


def load_pipeline_config(
    session: Session, *, env: Mapping[str, str] | None = None
) -> PipelineConfig:
    """Build a :class:`PipelineConfig` from platform settings and environment.

    Unparsable values fall back to the defaults with a warning; a value that
    parses but is out of range raises ``ValueError`` from the dataclass
    validation so misconfiguration is loud.
    """

    env = os.environ if env is None else env
    defaults = PipelineConfig()
    settings = read_platform_settings(session)

    cfg = PipelineConfig(
        fee_rate=_parse_decimal(
            settings.get(FEE_RATE_KEY), key=FEE_RATE_KEY, default=defaults.fee_rate
        ),
        auto_approval_enabled=_parse_bool(
            settings.get(AUTO_APPROVAL_ENABLED_KEY),
            key=AUTO_APPROVAL_ENABLED_KEY,
            default=defaults.auto_approval_enabled,
        ),
        auto_approval_threshold=_parse_decimal(
            settings.get(AUTO_APPROVAL_THRESHOLD_KEY),
            key=AUTO_APPROVAL_THRESHOLD_KEY,
            default=defaults.auto_approval_threshold,
        ),
        inference_timeout_s=_parse_number(
            env, "ROUNDUP_LLM_TIMEOUT", float, defaults.inference_timeout_s
        ),
        model=(env.get("ROUNDUP_LLM_MODEL") or defaults.model).strip(),
        batch_size=_parse_number(env, "ROUNDUP_BATCH_SIZE", int, defaults.batch_size),
        max_row_errors=_parse_number(env, "ROUNDUP_MAX_ROW_ERRORS", int, defaults.max_row_errors),
    )
    _logger.debug(
        "config:loaded fee_rate=%s auto_approval=%s threshold=%s timeout_s=%.1f batch_size=%d",
        cfg.fee_rate,
        cfg.auto_approval_enabled,
        cfg.auto_approval_threshold,
        cfg.inference_timeout_s,
        cfg.batch_size,
    )
    return cfg


__all__ = [
    "AUTO_APPROVAL_ENABLED_KEY",
    "AUTO_APPROVAL_THRESHOLD_KEY",
    "FEE_RATE_KEY",
    "PipelineConfig",
    "load_pipeline_config",
    "read_platform_settings",
]
