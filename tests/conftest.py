"""Configuration file for pytest containing fixtures shared by all tests.

- isolate_environment: drops DEPLOYFLOW_* variables so a developer's shell
  cannot change configuration discovery or logging in tests
- quiet_logging: keeps loguru at WARNING on the real stderr
"""

import os

import pytest

from deployflow.kernel.logging import configure_logging


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove deployflow environment overrides for the duration of a test."""
    for name in list(os.environ):
        if name.startswith("DEPLOYFLOW_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Restore a quiet log sink after each test (CLI tests swap stderr)."""
    configure_logging(level="WARNING", format="console", force_reconfigure=True)
    yield
    configure_logging(level="WARNING", format="console", force_reconfigure=True)
