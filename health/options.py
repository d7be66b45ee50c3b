# ============================================================================
# HEALTHCHECK OPTIONS
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Healthcheck configuration and presets
# PURPOSE: Timeouts, retries, concurrency policy and endpoint lists
# CREATED: 14 OCT 2026
# ============================================================================
"""
Healthcheck Options

Configuration consumed by HealthcheckEngine.

Presets (pure factories, each call returns a fresh object):
- local():      dev machine, short timeout, no retries, self-signed TLS ok
- production(): public endpoints, longer timeout, two retries
- pre_deploy(): fast gate before a deploy, no tracing, caller adds endpoints

Usage:
    options = HealthcheckOptions.production()
    options.custom_endpoints.append(ServiceEndpoint("docs", "https://docs.example"))
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from core.config import HealthcheckDefaults, get_defaults
from health.core import ServiceEndpoint


@dataclass
class HealthcheckOptions:
    """
    Options for one healthcheck run.

    Attributes:
        timeout: Per-request timeout in seconds
        parallel: Check endpoints concurrently when more than one
        retry_count: Extra attempts per endpoint (attempts = retry_count + 1)
        retry_delay: Seconds to wait between attempts
        degraded_threshold_ms: Latency at or above this is Degraded
        include_metadata: Attach response content length/type to results
        enable_tracing: Create spans when a tracer is available
        verify_tls: Verify server certificates (off for local presets)
        max_redirects: Redirect hops followed per request
        custom_endpoints: Endpoints checked by check_all()
    """
    timeout: float = 10.0
    parallel: bool = True
    retry_count: int = 1
    retry_delay: float = 0.5
    degraded_threshold_ms: int = 5000
    include_metadata: bool = False
    enable_tracing: bool = True
    verify_tls: bool = True
    max_redirects: int = 3
    custom_endpoints: List[ServiceEndpoint] = field(default_factory=list)

    def __post_init__(self):
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {self.retry_count}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")

    @property
    def attempts(self) -> int:
        """Total attempts per endpoint."""
        return self.retry_count + 1

    # ------------------------------------------------------------------
    # PRESETS
    # ------------------------------------------------------------------

    @classmethod
    def from_defaults(
        cls,
        defaults: Optional[HealthcheckDefaults] = None,
        endpoints: Optional[List[ServiceEndpoint]] = None,
    ) -> "HealthcheckOptions":
        """Create options from configuration defaults (env-overridable)."""
        defaults = defaults or get_defaults().healthcheck
        return cls(
            timeout=defaults.timeout_seconds,
            parallel=defaults.parallel,
            retry_count=defaults.retry_count,
            retry_delay=defaults.retry_delay_seconds,
            degraded_threshold_ms=defaults.degraded_threshold_ms,
            max_redirects=defaults.max_redirects,
            custom_endpoints=list(endpoints or []),
        )

    @classmethod
    def local(cls) -> "HealthcheckOptions":
        """Options for the local development environment."""
        return cls(
            timeout=5.0,
            retry_count=0,
            parallel=True,
            verify_tls=False,
            custom_endpoints=[
                ServiceEndpoint("api", "http://localhost:5010/healthz/readiness"),
                ServiceEndpoint("webapp", "http://localhost:4200"),
                ServiceEndpoint("unifiedhq", "http://localhost:4201"),
                ServiceEndpoint("cloud", "http://localhost:4202"),
                ServiceEndpoint("website", "http://localhost:4203"),
            ],
        )

    @classmethod
    def production(cls) -> "HealthcheckOptions":
        """Options for the production environment."""
        return cls(
            timeout=15.0,
            retry_count=2,
            parallel=True,
            verify_tls=True,
            custom_endpoints=[
                ServiceEndpoint("api", "https://app.served.dk/healthz/readiness"),
                ServiceEndpoint("unifiedhq", "https://unifiedhq.ai/"),
                ServiceEndpoint("cloud", "https://cloud.served.dk/"),
                ServiceEndpoint("website", "https://served.dk/"),
            ],
        )

    @classmethod
    def pre_deploy(cls) -> "HealthcheckOptions":
        """Options for pre-deploy verification (endpoints supplied by caller)."""
        return cls(
            timeout=3.0,
            retry_count=0,
            parallel=True,
            enable_tracing=False,
            verify_tls=False,
        )

    @classmethod
    def from_preset(cls, name: str) -> "HealthcheckOptions":
        """
        Create options from a preset name.

        Raises:
            ValueError: If the preset is unknown
        """
        key = name.strip().lower().replace("-", "_")
        factory = PRESETS.get(key)
        if factory is None:
            raise ValueError(
                f"Unknown healthcheck preset: {name!r} "
                f"(expected one of {', '.join(sorted(PRESETS))})"
            )
        return factory()


PRESETS: Dict[str, Callable[[], HealthcheckOptions]] = {
    "local": HealthcheckOptions.local,
    "production": HealthcheckOptions.production,
    "pre_deploy": HealthcheckOptions.pre_deploy,
    "predeploy": HealthcheckOptions.pre_deploy,
}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthcheckOptions",
    "PRESETS",
]
