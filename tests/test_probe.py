# ============================================================================
# STARTUP PROBE TESTS
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Tests - StartupProbe state machine
# PURPOSE: Verify transitions, failure records and the diagnostics file
# CREATED: 14 OCT 2026
# ============================================================================
"""
Startup Probe Tests

Every probe writes to a pytest tmp_path, never the user's home.

Run with:
    pytest tests/test_probe.py -v
"""

import asyncio
import json
import threading

import pytest

from core.config import reset_defaults
from health.probe import (
    PHASE_PROGRESS,
    StartupPhase,
    StartupProbe,
    StartupProbeState,
)


# ============================================================================
# HELPERS
# ============================================================================

class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _make_probe(tmp_path, **kwargs):
    return StartupProbe(probe_file=tmp_path / "startup-probe.json", **kwargs)


def _read_file(probe):
    return json.loads(probe.probe_file.read_text(encoding="utf-8"))


# ============================================================================
# INITIAL STATE
# ============================================================================

class TestInitialState:
    """A fresh probe."""

    def test_fresh_probe(self, tmp_path):
        probe = _make_probe(tmp_path)
        assert probe.phase == StartupPhase.INITIALIZING
        assert probe.progress == 5
        assert probe.is_alive is True
        assert probe.is_ready is False
        assert probe.error is None
        assert probe.error_details is None
        assert probe.events == ()

    def test_construction_writes_nothing(self, tmp_path):
        probe = _make_probe(tmp_path)
        assert not probe.probe_file.exists()

    def test_progress_table_covers_every_phase(self):
        assert set(PHASE_PROGRESS) == set(StartupPhase)
        assert PHASE_PROGRESS[StartupPhase.READY] == 100
        assert PHASE_PROGRESS[StartupPhase.FAILED] == 0

    def test_probe_file_from_env(self, tmp_path, monkeypatch):
        target = tmp_path / "custom.json"
        monkeypatch.setenv("STARTUP_PROBE_FILE", str(target))
        reset_defaults()
        try:
            assert StartupProbe().probe_file == target
        finally:
            reset_defaults()


# ============================================================================
# TRANSITIONS
# ============================================================================

class TestTransitions:
    """set_phase, mark_ready, report_warning."""

    def test_set_phase_appends_event(self, tmp_path):
        clock = FakeClock()
        probe = _make_probe(tmp_path, clock=clock)
        clock.advance(0.25)

        probe.set_phase(StartupPhase.BUILDING_APP)

        assert probe.phase == StartupPhase.BUILDING_APP
        assert probe.progress == 40
        event = probe.events[-1]
        assert event.phase == StartupPhase.BUILDING_APP
        assert event.message == "Entered BuildingApp phase"
        assert event.elapsed_ms == 250

    def test_set_phase_custom_message(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.RUNNING_MIGRATIONS, "Applying 3 migrations")
        assert probe.events[-1].message == "Applying 3 migrations"

    def test_set_phase_accepts_value(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase("WarmingUp")
        assert probe.phase == StartupPhase.WARMING_UP

    def test_phases_are_not_validated(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.WARMING_UP)
        probe.set_phase(StartupPhase.CONFIGURING_SERVICES)
        assert probe.phase == StartupPhase.CONFIGURING_SERVICES

    def test_mark_ready(self, tmp_path):
        clock = FakeClock()
        probe = _make_probe(tmp_path, clock=clock)
        clock.advance(1.5)

        probe.mark_ready()

        assert probe.phase == StartupPhase.READY
        assert probe.is_ready is True
        assert probe.progress == 100
        assert probe.events[-1].message == "Startup complete in 1500ms"

    def test_mark_ready_freezes_elapsed(self, tmp_path):
        clock = FakeClock()
        probe = _make_probe(tmp_path, clock=clock)
        clock.advance(2.0)
        probe.mark_ready()
        clock.advance(60.0)
        assert probe.elapsed_ms == 2000

    def test_failure_after_ready_still_fails(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.mark_ready()
        probe.report_failure(RuntimeError("late crash"))
        assert probe.phase == StartupPhase.FAILED
        assert probe.is_ready is False
        assert probe.is_alive is False
        assert probe.progress == 0

    def test_warning_keeps_phase(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.STARTING_SERVICES)
        probe.report_warning("Cache cold", "Run the warmup job")

        assert probe.phase == StartupPhase.STARTING_SERVICES
        event = probe.events[-1]
        assert event.message == "WARNING: Cache cold"
        assert event.is_warning is True
        assert event.is_error is False
        assert event.phase == StartupPhase.STARTING_SERVICES
        assert event.suggested_fix == "Run the warmup job"


# ============================================================================
# FAILURES
# ============================================================================

class TestReportFailure:
    """Structured failure records."""

    def test_database_failure(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.report_failure(ValueError("bad database connection"), "Startup")

        assert probe.phase == StartupPhase.FAILED
        assert probe.is_alive is False
        assert probe.error == "bad database connection"

        details = probe.error_details
        assert details.context == "Startup"
        assert details.exception_type == "ValueError"
        assert "database" in details.suggested_fix.lower()

        event = probe.events[-1]
        assert event.message == "FATAL: bad database connection"
        assert event.is_error is True

    def test_failure_persisted_before_return(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.report_failure(ValueError("bad database connection"))

        data = _read_file(probe)
        assert data["phase"] == "Failed"
        assert data["isAlive"] is False
        assert data["errorDetails"]["message"] == "bad database connection"
        assert data["errorDetails"]["suggestedFix"]

    def test_stack_and_inner_error(self, tmp_path):
        probe = _make_probe(tmp_path)
        try:
            try:
                raise KeyError("DATABASE_URL")
            except KeyError as e:
                raise RuntimeError("configuration incomplete") from e
        except RuntimeError as e:
            probe.report_failure(e, "Configuration")

        details = probe.error_details
        assert details.inner_error == "'DATABASE_URL'"
        assert "test_stack_and_inner_error" in details.stack_trace
        assert details.context == "Configuration"

    def test_unraised_exception_has_no_stack(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.report_failure(RuntimeError("never raised"))
        assert probe.error_details.stack_trace is None
        assert probe.error_details.inner_error is None

    def test_no_suggestion_for_unknown_error(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.report_failure(KeyError("x"))
        assert probe.error_details.suggested_fix is None

    def test_qualified_type_name(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.report_failure(json.JSONDecodeError("bad", "{", 0))
        assert probe.error_details.exception_type == "json.decoder.JSONDecodeError"


# ============================================================================
# PERSISTENCE
# ============================================================================

class TestPersistence:
    """Diagnostics file writes and reads."""

    def test_every_mutation_rewrites_file(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.CONFIGURING_SERVICES)
        assert _read_file(probe)["phase"] == "ConfiguringServices"

        probe.report_warning("slow disk")
        assert len(_read_file(probe)["events"]) == 2

        probe.mark_ready()
        data = _read_file(probe)
        assert data["isReady"] is True
        assert data["progress"] == 100
        assert len(data["events"]) == 3

    def test_file_uses_camel_case(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.BUILDING_APP)
        data = _read_file(probe)
        assert {"phase", "isReady", "isAlive", "progress", "elapsedMs", "error", "events"} <= set(data)
        assert {"phase", "message", "timestamp", "elapsedMs", "isError", "isWarning"} <= set(data["events"][0])

    def test_creates_parent_directory(self, tmp_path):
        probe = StartupProbe(probe_file=tmp_path / "nested" / "dir" / "probe.json")
        probe.set_phase(StartupPhase.BUILDING_APP)
        assert probe.probe_file.exists()

    def test_no_temp_files_left(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.BUILDING_APP)
        probe.mark_ready()
        assert [p.name for p in tmp_path.iterdir()] == ["startup-probe.json"]

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        probe = StartupProbe(probe_file=blocker / "probe.json")

        probe.set_phase(StartupPhase.BUILDING_APP)
        probe.report_failure(ValueError("bad database connection"))

        assert probe.phase == StartupPhase.FAILED
        assert len(probe.events) == 2

    def test_failed_replace_removes_temp_file(self, tmp_path, monkeypatch):
        def refuse_replace(src, dst):
            raise PermissionError("target locked")

        monkeypatch.setattr("health.probe.os.replace", refuse_replace)
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.BUILDING_APP)

        assert probe.phase == StartupPhase.BUILDING_APP
        assert list(tmp_path.iterdir()) == []

    def test_persist_disabled(self, tmp_path):
        probe = _make_probe(tmp_path, persist=False)
        probe.set_phase(StartupPhase.BUILDING_APP)
        probe.mark_ready()
        assert not probe.probe_file.exists()

    def test_load_state_round_trip(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.RUNNING_MIGRATIONS)
        probe.report_failure(ValueError("migration 42 failed"), "Migrations")

        state = StartupProbe.load_state(probe.probe_file)
        assert isinstance(state, StartupProbeState)
        assert state.phase == StartupPhase.FAILED
        assert state.error_details.context == "Migrations"
        assert [e.phase for e in state.events] == [
            StartupPhase.RUNNING_MIGRATIONS,
            StartupPhase.FAILED,
        ]

    def test_load_state_missing(self, tmp_path):
        assert StartupProbe.load_state(tmp_path / "missing.json") is None

    def test_load_state_corrupt(self, tmp_path):
        path = tmp_path / "probe.json"
        path.write_text("{not json")
        assert StartupProbe.load_state(path) is None

    def test_clear_state(self, tmp_path):
        probe = _make_probe(tmp_path)
        probe.set_phase(StartupPhase.BUILDING_APP)
        StartupProbe.clear_state(probe.probe_file)
        assert not probe.probe_file.exists()
        # Clearing twice is fine
        StartupProbe.clear_state(probe.probe_file)


# ============================================================================
# PHASE WRAPPERS
# ============================================================================

class TestRunPhase:
    """run_phase / run_phase_async."""

    def test_success(self, tmp_path):
        probe = _make_probe(tmp_path)
        with probe.run_phase(StartupPhase.RUNNING_MIGRATIONS, "Migrations"):
            assert probe.phase == StartupPhase.RUNNING_MIGRATIONS
        assert probe.events[-1].message == "Starting: Migrations"
        assert probe.is_alive

    def test_failure_reported_and_reraised(self, tmp_path):
        probe = _make_probe(tmp_path)
        with pytest.raises(ValueError, match="bad database connection"):
            with probe.run_phase(StartupPhase.RUNNING_MIGRATIONS, "Migrations"):
                raise ValueError("bad database connection")

        assert probe.phase == StartupPhase.FAILED
        assert probe.error_details.context == "Migrations"

    def test_async(self, tmp_path):
        probe = _make_probe(tmp_path)

        async def warm(n):
            await asyncio.sleep(0)
            return n * 2

        result = asyncio.run(
            probe.run_phase_async(StartupPhase.WARMING_UP, "Warmup", warm, 21)
        )
        assert result == 42
        assert probe.phase == StartupPhase.WARMING_UP

    def test_async_failure(self, tmp_path):
        probe = _make_probe(tmp_path)

        async def boom():
            raise RuntimeError("redis unavailable")

        with pytest.raises(RuntimeError):
            asyncio.run(probe.run_phase_async(StartupPhase.STARTING_SERVICES, "Cache", boom))

        assert probe.phase == StartupPhase.FAILED
        assert "Redis" in probe.error_details.suggested_fix


# ============================================================================
# CONCURRENCY
# ============================================================================

class TestConcurrency:
    """Concurrent callers."""

    def test_concurrent_warnings_all_recorded(self, tmp_path):
        probe = _make_probe(tmp_path, persist=False)

        def worker(n):
            for i in range(50):
                probe.report_warning(f"worker {n} warning {i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(probe.events) == 400
        assert probe.phase == StartupPhase.INITIALIZING

    def test_get_state_snapshot_is_detached(self, tmp_path):
        probe = _make_probe(tmp_path)
        state = probe.get_state()
        probe.set_phase(StartupPhase.BUILDING_APP)
        assert state.phase == StartupPhase.INITIALIZING
        assert state.events == []
