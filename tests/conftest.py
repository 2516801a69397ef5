"""
Pytest configuration and fixtures for alertbridge tests.

This conftest.py provides shared fixtures and hooks for all tests.
"""
import pytest


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset singleton instances between tests to ensure test isolation.

    This is applied automatically to all tests (autouse=True).
    """
    from infra.metrics import MetricsRecorder

    # Reset BEFORE test (cleanup from previous test pollution)
    MetricsRecorder._reset_for_testing()

    yield

    MetricsRecorder._reset_for_testing()


@pytest.fixture(autouse=True)
def clear_config_env(monkeypatch):
    """Keep the developer's shell environment out of config-driven tests."""
    from tools.config_validator import ENV_OVERRIDES

    for key in ENV_OVERRIDES:
        monkeypatch.delenv(key, raising=False)
