# ============================================================================
# HEALTH VERIFICATION MODULE
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Healthchecks and startup probe
# PURPOSE: Endpoint healthchecks and Kubernetes startup/readiness probes
# CREATED: 14 OCT 2026
# ============================================================================
"""
Health Verification Module

Two halves:
- HealthcheckEngine: checks N service endpoints (parallel or sequential)
  with retry, per-request timeout and threshold-based aggregation
- StartupProbe: startup phase state machine with a file-backed
  diagnostics snapshot and readiness/liveness/startup endpoints

Usage:
    from health import HealthcheckEngine, HealthcheckOptions

    async with HealthcheckEngine(HealthcheckOptions.local()) as engine:
        result = await engine.check_all()

    from health import StartupProbe, create_health_router

    probe = StartupProbe()
    app.include_router(create_health_router(probe))
"""

from health.core import (
    HealthStatus,
    ServiceEndpoint,
    ComponentHealth,
    HealthcheckResult,
)
from health.options import HealthcheckOptions, PRESETS
from health.rules import simplify_transport_error, suggest_fix
from health.executor import HealthcheckEngine, check_local, check_production
from health.probe import (
    StartupPhase,
    StartupProbe,
    StartupProbeState,
    StartupEvent,
    StartupError,
    PHASE_PROGRESS,
)
from health.router import create_health_router

__all__ = [
    # Core types
    "HealthStatus",
    "ServiceEndpoint",
    "ComponentHealth",
    "HealthcheckResult",
    # Options
    "HealthcheckOptions",
    "PRESETS",
    # Rules
    "simplify_transport_error",
    "suggest_fix",
    # Engine
    "HealthcheckEngine",
    "check_local",
    "check_production",
    # Startup probe
    "StartupPhase",
    "StartupProbe",
    "StartupProbeState",
    "StartupEvent",
    "StartupError",
    "PHASE_PROGRESS",
    # Router
    "create_health_router",
]
