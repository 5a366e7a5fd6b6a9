"""Pytest configuration for test isolation.

The pipeline reads ``ROUNDUP_*``/``DATABASE_URL`` from the environment and
constructs an OpenAI client for the inference tier. To keep tests hermetic:

- every ``ROUNDUP_*`` variable and the API keys are cleared per test;
- ``roundup_invest.inference.OpenAI`` is replaced by a stub whose calls
  fail, so a test that forgets to install a reply can never reach the
  network (the inference tier simply falls through);
- cached SQLAlchemy engines are disposed after each test so the per-test
  SQLite files are released.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make the workspace packages importable without an install
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from roundup_db.client import dispose_engines  # noqa: E402

import roundup_invest.inference as inference_mod  # noqa: E402

from tests.helpers.llm_stub import make_openai_stub, unavailable  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("ROUNDUP_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TELLER_CERT", raising=False)
    monkeypatch.delenv("TELLER_KEY", raising=False)


@pytest.fixture(autouse=True)
def _offline_inference(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    calls: list[dict] = []
    monkeypatch.setattr(inference_mod, "OpenAI", make_openai_stub(unavailable, calls))
    return calls


@pytest.fixture(autouse=True)
def _dispose_engines() -> Iterator[None]:
    yield
    dispose_engines()
