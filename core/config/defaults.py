# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for healthchecks, tracing, startup probe
# CREATED: 14 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for healthcheck runs, telemetry export and the
startup probe diagnostics file. Every group can be overridden via
environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _env_codes(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    # Comma-separated status codes, e.g. "200,204,401"
    value = os.getenv(name, "").strip()
    if not value:
        return default
    return tuple(int(code) for code in value.split(",") if code.strip())


@dataclass(frozen=True)
class HealthcheckDefaults:
    """
    Defaults for endpoint healthchecks.

    Used when HealthcheckOptions are built without explicit values.
    """
    timeout_seconds: float = 10.0
    parallel: bool = True
    retry_count: int = 1
    retry_delay_seconds: float = 0.5
    degraded_threshold_ms: int = 5000
    max_redirects: int = 3

    # Status codes that count as reachable for endpoints that set none
    expected_status_codes: Tuple[int, ...] = (200, 201, 204)

    # Preset used by the /health/services endpoint
    preset: str = "local"

    @classmethod
    def from_env(cls) -> "HealthcheckDefaults":
        """Create from environment variables."""
        return cls(
            timeout_seconds=float(os.getenv("HEALTHCHECK_TIMEOUT_SECONDS", 10.0)),
            parallel=_env_bool("HEALTHCHECK_PARALLEL", True),
            retry_count=int(os.getenv("HEALTHCHECK_RETRY_COUNT", 1)),
            retry_delay_seconds=float(os.getenv("HEALTHCHECK_RETRY_DELAY_SECONDS", 0.5)),
            degraded_threshold_ms=int(os.getenv("HEALTHCHECK_DEGRADED_THRESHOLD_MS", 5000)),
            max_redirects=int(os.getenv("HEALTHCHECK_MAX_REDIRECTS", 3)),
            expected_status_codes=_env_codes(
                "HEALTHCHECK_EXPECTED_STATUS_CODES", cls.expected_status_codes
            ),
            preset=os.getenv("HEALTHCHECK_PRESET", "local").lower(),
        )


@dataclass(frozen=True)
class TracingDefaults:
    """
    Defaults for the tracing facade.

    Export is enabled when either a telemetry endpoint API key or an
    OTLP endpoint is configured, or TRACING_ENABLED=true.
    """
    service_name: str = "health-verification"
    service_version: str = "0.0.0"
    environment: str = "development"

    # Batched HTTP export
    telemetry_enabled: bool = False
    telemetry_endpoint: str = "https://telemetry.localhost/v1/telemetry"
    telemetry_api_key: Optional[str] = None

    # OpenTelemetry collector
    otlp_enabled: bool = False
    otlp_endpoint: Optional[str] = None

    # Sampling (1.0 = 100%)
    sample_rate: float = 1.0
    always_sample_errors: bool = True

    # Batching
    buffer_size: int = 100
    flush_interval_seconds: float = 5.0
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> "TracingDefaults":
        """Create from environment variables."""
        from __version__ import __version__

        api_key = os.getenv("TELEMETRY_API_KEY") or None
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None
        telemetry_enabled = api_key is not None
        otlp_enabled = otlp_endpoint is not None

        # Default to the HTTP exporter when tracing is switched on without one
        if _env_bool("TRACING_ENABLED", False) and not (telemetry_enabled or otlp_enabled):
            telemetry_enabled = True

        try:
            sample_rate = _clamp(float(os.getenv("TRACING_SAMPLE_RATE", 1.0)), 0.0, 1.0)
        except ValueError:
            sample_rate = 1.0

        return cls(
            service_name=os.getenv("SERVICE_NAME", "health-verification"),
            service_version=os.getenv("SERVICE_VERSION", __version__),
            environment=os.getenv("ENVIRONMENT", "development"),
            telemetry_enabled=telemetry_enabled,
            telemetry_endpoint=(
                os.getenv("TELEMETRY_ENDPOINT")
                or "https://telemetry.localhost/v1/telemetry"
            ),
            telemetry_api_key=api_key,
            otlp_enabled=otlp_enabled,
            otlp_endpoint=otlp_endpoint,
            sample_rate=sample_rate,
            always_sample_errors=_env_bool("TRACING_ALWAYS_SAMPLE_ERRORS", True),
            buffer_size=int(os.getenv("TRACING_BUFFER_SIZE", 100)),
            flush_interval_seconds=float(os.getenv("TRACING_FLUSH_INTERVAL_SECONDS", 5.0)),
            max_retries=int(os.getenv("TRACING_MAX_RETRIES", 3)),
        )


@dataclass(frozen=True)
class ProbeDefaults:
    """
    Defaults for the startup probe.

    The probe file is read by out-of-process pollers (CLI, orchestrator).
    """
    probe_file: Path = field(
        default_factory=lambda: Path.home() / ".served" / "startup-probe.json"
    )

    @classmethod
    def from_env(cls) -> "ProbeDefaults":
        """Create from environment variables."""
        probe_file = os.getenv("STARTUP_PROBE_FILE")
        if probe_file:
            return cls(probe_file=Path(probe_file).expanduser())
        return cls()


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    healthcheck: HealthcheckDefaults = field(default_factory=HealthcheckDefaults)
    tracing: TracingDefaults = field(default_factory=TracingDefaults)
    probe: ProbeDefaults = field(default_factory=ProbeDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            healthcheck=HealthcheckDefaults.from_env(),
            tracing=TracingDefaults.from_env(),
            probe=ProbeDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthcheckDefaults",
    "TracingDefaults",
    "ProbeDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
