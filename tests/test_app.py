# ============================================================================
# HOST APPLICATION TESTS
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Tests - main.create_app lifespan
# PURPOSE: Verify the lifespan walks the probe to Ready
# CREATED: 14 OCT 2026
# ============================================================================
"""
Host Application Tests

Run with:
    pytest tests/test_app.py -v
"""

import pytest
from fastapi.testclient import TestClient

from core.config import reset_defaults
from health.probe import StartupPhase, StartupProbe
from main import create_app


@pytest.fixture
def probe(tmp_path, monkeypatch):
    for name in ("TELEMETRY_API_KEY", "OTEL_EXPORTER_OTLP_ENDPOINT", "TRACING_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    reset_defaults()
    yield StartupProbe(probe_file=tmp_path / "startup-probe.json")
    reset_defaults()


class TestLifespan:
    """Startup sequence driven by the FastAPI lifespan."""

    def test_not_ready_before_lifespan(self, probe):
        client = TestClient(create_app(probe))
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["phase"] == "Initializing"

    def test_ready_after_lifespan(self, probe):
        with TestClient(create_app(probe)) as client:
            assert client.get("/health/ready").status_code == 200
            assert client.get("/health/live").status_code == 200
            assert client.get("/").json()["phase"] == "Ready"

    def test_phase_sequence(self, probe):
        with TestClient(create_app(probe)):
            pass

        phases = [e.phase for e in probe.events if not e.is_warning]
        assert phases == [
            StartupPhase.CONFIGURING_SERVICES,
            StartupPhase.BUILDING_APP,
            StartupPhase.REGISTERING_ENDPOINTS,
            StartupPhase.STARTING_SERVICES,
            StartupPhase.WARMING_UP,
            StartupPhase.READY,
        ]

    def test_telemetry_warning_when_disabled(self, probe):
        with TestClient(create_app(probe)):
            pass
        warnings = [e for e in probe.events if e.is_warning]
        assert warnings[0].message == "WARNING: Telemetry export disabled"

    def test_diagnostics_file_written(self, probe):
        with TestClient(create_app(probe)):
            pass
        state = StartupProbe.load_state(probe.probe_file)
        assert state.is_ready is True
        assert state.progress == 100
