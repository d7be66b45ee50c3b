# ============================================================================
# STARTUP PROBE
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Startup phase state machine
# PURPOSE: Track startup progress, failures and readiness for probes and CLIs
# CREATED: 14 OCT 2026
# ============================================================================
"""
Startup Probe

Tracks a host process through its startup phases:

    Initializing -> ConfiguringServices -> BuildingApp -> RunningMigrations
    -> RegisteringEndpoints -> StartingServices -> WarmingUp -> Ready

Failed can be entered from any phase. Transitions are not validated;
callers advance phases in order.

The probe is an explicit object. Construct one at process entry and hand
it to whatever serves the readiness endpoints (see health.router):

    probe = StartupProbe()
    with probe.run_phase(StartupPhase.RUNNING_MIGRATIONS, "Migrations"):
        run_migrations()
    probe.mark_ready()

Every mutation rewrites the diagnostics file (default
~/.served/startup-probe.json, env STARTUP_PROBE_FILE) so another process
can poll startup without sharing memory. Writing that file is best-effort:
failures are logged and never raised into the host.
"""

import logging
import os
import threading
import time
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.config import get_defaults
from core.logging import log_checkpoint, log_context
from health.rules import suggest_fix

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# PHASES
# ============================================================================

class StartupPhase(str, Enum):
    """Startup phases, in the order a host normally walks them."""
    INITIALIZING = "Initializing"
    CONFIGURING_SERVICES = "ConfiguringServices"
    BUILDING_APP = "BuildingApp"
    RUNNING_MIGRATIONS = "RunningMigrations"
    REGISTERING_ENDPOINTS = "RegisteringEndpoints"
    STARTING_SERVICES = "StartingServices"
    WARMING_UP = "WarmingUp"
    READY = "Ready"
    FAILED = "Failed"


# Cosmetic only, never used for control flow
PHASE_PROGRESS: Dict[StartupPhase, int] = {
    StartupPhase.INITIALIZING: 5,
    StartupPhase.CONFIGURING_SERVICES: 20,
    StartupPhase.BUILDING_APP: 40,
    StartupPhase.RUNNING_MIGRATIONS: 60,
    StartupPhase.REGISTERING_ENDPOINTS: 75,
    StartupPhase.STARTING_SERVICES: 85,
    StartupPhase.WARMING_UP: 95,
    StartupPhase.READY: 100,
    StartupPhase.FAILED: 0,
}


# ============================================================================
# DIAGNOSTICS FILE MODELS
# ============================================================================

class _ProbeModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class StartupEvent(_ProbeModel):
    """One entry in the append-only startup event log."""

    phase: StartupPhase
    message: str
    timestamp: datetime = Field(default_factory=_utc_now)
    elapsed_ms: int = 0
    is_error: bool = False
    is_warning: bool = False
    suggested_fix: Optional[str] = None


class StartupError(_ProbeModel):
    """Structured record of the exception that failed startup."""

    context: str
    message: str
    exception_type: str
    stack_trace: Optional[str] = None
    inner_error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)
    suggested_fix: Optional[str] = None


class StartupProbeState(_ProbeModel):
    """Full probe snapshot, the diagnostics file format."""

    phase: StartupPhase
    is_ready: bool
    is_alive: bool
    progress: int = Field(ge=0, le=100)
    elapsed_ms: int
    error: Optional[str] = None
    error_details: Optional[StartupError] = None
    events: List[StartupEvent] = Field(default_factory=list)
    pid: Optional[int] = None
    updated_at: datetime = Field(default_factory=_utc_now)


def _exception_type_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def _stack_text(exc: BaseException) -> Optional[str]:
    if exc.__traceback__ is None:
        return None
    return "".join(traceback.format_tb(exc.__traceback__))


def _inner_error(exc: BaseException) -> Optional[str]:
    inner = exc.__cause__ or exc.__context__
    if inner is None:
        return None
    return str(inner) or type(inner).__name__


# ============================================================================
# PROBE
# ============================================================================

class StartupProbe:
    """
    Startup state machine with file-backed diagnostics.

    All public methods are safe to call from several threads or tasks;
    mutations are serialized by a re-entrant lock.
    """

    def __init__(
        self,
        probe_file: Optional[Path] = None,
        persist: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize probe in the Initializing phase.

        Args:
            probe_file: Diagnostics file path (config default if None)
            persist: Write the diagnostics file on every mutation
            clock: Monotonic clock in seconds
        """
        self.probe_file = Path(probe_file) if probe_file else get_defaults().probe.probe_file
        self.persist = persist
        self._clock = clock
        self._started_at = clock()
        self._stopped_at: Optional[float] = None

        self._lock = threading.RLock()
        self._phase = StartupPhase.INITIALIZING
        self._events: List[StartupEvent] = []
        self._error: Optional[str] = None
        self._error_details: Optional[StartupError] = None

    # ------------------------------------------------------------------
    # DERIVED STATE
    # ------------------------------------------------------------------

    @property
    def phase(self) -> StartupPhase:
        return self._phase

    @property
    def is_ready(self) -> bool:
        return self._phase == StartupPhase.READY

    @property
    def is_alive(self) -> bool:
        return self._phase != StartupPhase.FAILED

    @property
    def progress(self) -> int:
        return PHASE_PROGRESS.get(self._phase, 0)

    @property
    def elapsed_ms(self) -> int:
        """Milliseconds since construction, frozen once mark_ready() ran."""
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return int((end - self._started_at) * 1000)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def error_details(self) -> Optional[StartupError]:
        return self._error_details

    @property
    def events(self) -> Tuple[StartupEvent, ...]:
        with self._lock:
            return tuple(self._events)

    # ------------------------------------------------------------------
    # TRANSITIONS
    # ------------------------------------------------------------------

    def set_phase(self, phase: StartupPhase, message: Optional[str] = None) -> None:
        """Move to a phase (not validated against the current one)."""
        phase = StartupPhase(phase)
        with self._lock:
            previous = self._phase
            self._phase = phase
            event = self._append_event(phase, message or f"Entered {phase.value} phase")
            self._persist()

        with log_context(phase=phase.value):
            log_checkpoint(
                "startup_phase_changed",
                {
                    "from": previous.value,
                    "to": phase.value,
                    "progress": PHASE_PROGRESS[phase],
                    "elapsed_ms": event.elapsed_ms,
                },
                logger=logger,
            )

    def report_failure(self, exc: BaseException, context: str = "Startup") -> None:
        """
        Record a startup failure and move to Failed.

        The exception is stored, not raised. The diagnostics file is
        written before this returns so a poller sees the failure at once.
        """
        message = str(exc) or type(exc).__name__
        details = StartupError(
            context=context,
            message=message,
            exception_type=_exception_type_name(exc),
            stack_trace=_stack_text(exc),
            inner_error=_inner_error(exc),
            suggested_fix=suggest_fix(exc),
        )

        with self._lock:
            self._phase = StartupPhase.FAILED
            self._error = message
            self._error_details = details
            self._append_event(
                StartupPhase.FAILED,
                f"FATAL: {message}",
                is_error=True,
                suggested_fix=details.suggested_fix,
            )
            self._persist()

        with log_context(phase=StartupPhase.FAILED.value):
            logger.error(f"Startup failed ({context}): {details.exception_type}: {message}")
            if details.suggested_fix:
                logger.error(f"Suggested fix: {details.suggested_fix}")
            log_checkpoint(
                "startup_failed",
                {"context": context, "exception_type": details.exception_type},
                logger=logger,
            )

    def report_warning(self, message: str, suggested_fix: Optional[str] = None) -> None:
        """Record a warning event; the phase is unchanged."""
        with self._lock:
            self._append_event(
                self._phase,
                f"WARNING: {message}",
                is_warning=True,
                suggested_fix=suggested_fix,
            )
            self._persist()

        logger.warning(f"Startup warning: {message}")

    def mark_ready(self) -> None:
        """Stop the startup timer and move to Ready."""
        with self._lock:
            if self._stopped_at is None:
                self._stopped_at = self._clock()
            self._phase = StartupPhase.READY
            elapsed_ms = self.elapsed_ms
            self._append_event(StartupPhase.READY, f"Startup complete in {elapsed_ms}ms")
            self._persist()

        with log_context(phase=StartupPhase.READY.value):
            log_checkpoint("startup_ready", {"elapsed_ms": elapsed_ms}, logger=logger)

    def _append_event(
        self,
        phase: StartupPhase,
        message: str,
        is_error: bool = False,
        is_warning: bool = False,
        suggested_fix: Optional[str] = None,
    ) -> StartupEvent:
        event = StartupEvent(
            phase=phase,
            message=message,
            elapsed_ms=self.elapsed_ms,
            is_error=is_error,
            is_warning=is_warning,
            suggested_fix=suggested_fix,
        )
        self._events.append(event)
        return event

    # ------------------------------------------------------------------
    # PHASE WRAPPERS
    # ------------------------------------------------------------------

    @contextmanager
    def run_phase(self, phase: StartupPhase, context: str):
        """
        Enter a phase for the duration of a block.

        An exception escaping the block is reported as the startup
        failure and then re-raised.
        """
        self.set_phase(phase, f"Starting: {context}")
        try:
            yield self
        except Exception as e:
            self.report_failure(e, context)
            raise

    async def run_phase_async(
        self,
        phase: StartupPhase,
        context: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await func inside a phase (see run_phase)."""
        with self.run_phase(phase, context):
            return await func(*args, **kwargs)

    # ------------------------------------------------------------------
    # SNAPSHOT & PERSISTENCE
    # ------------------------------------------------------------------

    def get_state(self) -> StartupProbeState:
        """Snapshot of the full probe state."""
        with self._lock:
            return StartupProbeState(
                phase=self._phase,
                is_ready=self.is_ready,
                is_alive=self.is_alive,
                progress=self.progress,
                elapsed_ms=self.elapsed_ms,
                error=self._error,
                error_details=self._error_details,
                events=list(self._events),
                pid=os.getpid(),
            )

    def _persist(self) -> None:
        """Best-effort write of the diagnostics file: log and continue on failure."""
        if not self.persist:
            return

        path = self.probe_file
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            payload = self.get_state().model_dump_json(by_alias=True, indent=2)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            # Whole-file replace, readers never see a partial write
            os.replace(tmp_path, path)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Startup probe state not written to {path}: {e}")
            try:
                tmp_path.unlink()
            except OSError:
                pass

    @staticmethod
    def load_state(path: Optional[Path] = None) -> Optional[StartupProbeState]:
        """
        Read a persisted probe state (e.g. from a CLI or orchestrator).

        Returns:
            The state, or None when the file is missing or unreadable
        """
        path = Path(path) if path else get_defaults().probe.probe_file
        try:
            return StartupProbeState.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Could not read startup probe state from {path}: {e}")
            return None

    @staticmethod
    def clear_state(path: Optional[Path] = None) -> None:
        """Delete a persisted probe state file if present."""
        path = Path(path) if path else get_defaults().probe.probe_file
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not clear startup probe state at {path}: {e}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StartupPhase",
    "PHASE_PROGRESS",
    "StartupEvent",
    "StartupError",
    "StartupProbeState",
    "StartupProbe",
]
