import pytest

from tools import telemetry


@pytest.fixture(autouse=True)
def _isolated_telemetry(monkeypatch):
    """Keep telemetry on text/log-only output between tests."""
    monkeypatch.setattr(telemetry.settings, "telemetry_format", "text")
    monkeypatch.setattr(telemetry.settings, "telemetry_path", None)
    telemetry.reset_telemetry_for_testing()
    yield
    telemetry.reset_telemetry_for_testing()


@pytest.fixture
def missing_path(tmp_path):
    """Path to an optional source that does not exist."""
    return tmp_path / "does-not-exist.json"
