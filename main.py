# ============================================================================
# HEALTH VERIFICATION - EXAMPLE HOST APPLICATION
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - FastAPI application entry point
# PURPOSE: Host app wiring a StartupProbe, tracer and probe endpoints
# CREATED: 14 OCT 2026
# ============================================================================
"""
Health Verification Host Application

FastAPI application that:
1. Walks a StartupProbe through its phases during the lifespan
2. Serves readiness/liveness/startup probes from that probe
3. Checks dependent services on GET /health/services

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE, EPOCH

from core.config import get_defaults
from core.observability import Tracer, TracingConfig
from health import (
    HealthcheckEngine,
    HealthcheckOptions,
    StartupPhase,
    StartupProbe,
    create_health_router,
)

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger, ComponentType

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__, ComponentType.APP)


def create_app(probe: Optional[StartupProbe] = None) -> FastAPI:
    """
    Create the host application.

    Args:
        probe: Startup probe to drive and expose (new probe if None)

    Returns:
        FastAPI app; startup runs in its lifespan
    """
    probe = probe or StartupProbe()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Advances the probe on startup, closes the tracer on shutdown.
        """
        logger.info(f"Starting Health Verification v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

        # Stale state from a previous run would confuse pollers
        StartupProbe.clear_state(probe.probe_file)

        with probe.run_phase(StartupPhase.CONFIGURING_SERVICES, "Loading configuration"):
            defaults = get_defaults()
            logger.info(f"Healthcheck preset: {defaults.healthcheck.preset}")

        with probe.run_phase(StartupPhase.BUILDING_APP, "Creating tracer"):
            tracer = Tracer(TracingConfig.from_defaults(defaults.tracing))
            app.state.tracer = tracer

        probe.set_phase(StartupPhase.REGISTERING_ENDPOINTS, "Probe endpoints mounted")

        await probe.run_phase_async(
            StartupPhase.STARTING_SERVICES, "Starting telemetry flush", tracer.start
        )
        if not tracer.enabled:
            probe.report_warning(
                "Telemetry export disabled",
                "Set TELEMETRY_API_KEY or OTEL_EXPORTER_OTLP_ENDPOINT to export spans.",
            )

        probe.set_phase(StartupPhase.WARMING_UP)
        probe.mark_ready()
        logger.info(f"Startup complete in {probe.elapsed_ms}ms")

        yield

        # Shutdown
        logger.info("Shutting down Health Verification...")
        await tracer.aclose()
        logger.info("Health Verification stopped")

    app = FastAPI(
        title="Health Verification",
        description=f"Epoch {EPOCH} service healthchecks and startup probes",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.probe = probe
    app.state.tracer = None

    def engine_factory() -> HealthcheckEngine:
        preset = get_defaults().healthcheck.preset
        return HealthcheckEngine(
            HealthcheckOptions.from_preset(preset),
            tracer=app.state.tracer,
        )

    # Include probe routes (no prefix - /health/ready, /health/live, ...)
    app.include_router(create_health_router(probe, engine_factory=engine_factory))

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Health Verification",
            "version": __version__,
            "epoch": EPOCH,
            "build_date": BUILD_DATE,
            "phase": probe.phase.value,
            "docs": "/docs",
        }

    return app


app = create_app()


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
