import pytest


@pytest.fixture(autouse=True)
def _no_master_log(monkeypatch):
    """Keep CLI invocations from teeing output into ~/.logs during tests."""
    monkeypatch.setenv("LSR_LOG_DISABLED", "1")
