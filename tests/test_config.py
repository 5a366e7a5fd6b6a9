from __future__ import annotations

from decimal import Decimal

import pytest

from roundup_db.client import session_scope

from roundup_invest.config import (
    AUTO_APPROVAL_ENABLED_KEY,
    AUTO_APPROVAL_THRESHOLD_KEY,
    FEE_RATE_KEY,
    PipelineConfig,
    load_pipeline_config,
)

from tests.helpers.db import bootstrap_sqlite_db, seed_settings


@pytest.fixture
def db_url(tmp_path) -> str:
    return bootstrap_sqlite_db(tmp_path / "t.db")


def test_defaults_without_settings_or_env(db_url: str):
    with session_scope(database_url=db_url) as s:
        cfg = load_pipeline_config(s, env={})

    assert cfg == PipelineConfig()
    assert cfg.fee_rate == Decimal("0.025")
    assert cfg.auto_approval_enabled is False
    assert cfg.auto_approval_threshold == Decimal("0.90")
    assert cfg.inference_timeout_s == 8.0


def test_platform_settings_and_env_override_defaults(db_url: str):
    seed_settings(
        database_url=db_url,
        values={
            FEE_RATE_KEY: "0.01",
            AUTO_APPROVAL_ENABLED_KEY: "true",
            AUTO_APPROVAL_THRESHOLD_KEY: "0.85",
        },
    )
    env = {"ROUNDUP_LLM_TIMEOUT": "3.5", "ROUNDUP_BATCH_SIZE": "10", "ROUNDUP_LLM_MODEL": "m-1"}

    with session_scope(database_url=db_url) as s:
        cfg = load_pipeline_config(s, env=env)

    assert cfg.fee_rate == Decimal("0.01")
    assert cfg.auto_approval_enabled is True
    assert cfg.auto_approval_threshold == Decimal("0.85")
    assert cfg.inference_timeout_s == 3.5
    assert cfg.batch_size == 10
    assert cfg.model == "m-1"


def test_unparsable_values_fall_back_to_defaults(db_url: str):
    seed_settings(
        database_url=db_url,
        values={FEE_RATE_KEY: "two percent", AUTO_APPROVAL_ENABLED_KEY: "maybe"},
    )

    with session_scope(database_url=db_url) as s:
        cfg = load_pipeline_config(s, env={"ROUNDUP_BATCH_SIZE": "lots"})

    assert cfg.fee_rate == Decimal("0.025")
    assert cfg.auto_approval_enabled is False
    assert cfg.batch_size == 500


def test_out_of_range_values_are_rejected(db_url: str):
    seed_settings(database_url=db_url, values={FEE_RATE_KEY: "1.5"})

    with session_scope(database_url=db_url) as s, pytest.raises(ValueError, match="fee_rate"):
        load_pipeline_config(s, env={})

    with pytest.raises(ValueError):
        PipelineConfig(inference_timeout_s=45)
    with pytest.raises(ValueError):
        PipelineConfig(batch_size=0)


@pytest.mark.parametrize(
    ("enabled", "confidence", "expected"),
    [
        (True, "0.90", True),
        (True, "0.95", True),
        (True, "0.89", False),
        (False, "0.99", False),
    ],
)
def test_auto_approval_needs_switch_and_threshold(enabled: bool, confidence: str, expected: bool):
    cfg = PipelineConfig(auto_approval_enabled=enabled)
    assert cfg.approves(Decimal(confidence)) is expected
