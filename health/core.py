# ============================================================================
# HEALTH CHECK CORE TYPES
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Endpoint, result and status types
# PURPOSE: Value objects produced and consumed by the healthcheck engine
# CREATED: 14 OCT 2026
# ============================================================================
"""
Health Check Core Types

Defines the endpoint description and the result types for healthchecks.

Status precedence (see HealthStatus.aggregate):
- empty list: unknown
- every entry healthy: healthy
- any unhealthy: unhealthy
- any degraded or unknown: degraded

This is a strict precedence order rather than a worst-of vote: a list of
only unknown entries aggregates to degraded.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone

from core.config import HealthcheckDefaults, get_defaults


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status values."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def aggregate(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        """Aggregate multiple statuses (strict precedence, see module doc)."""
        statuses = list(statuses)
        if not statuses:
            return cls.UNKNOWN
        if all(s == cls.HEALTHY for s in statuses):
            return cls.HEALTHY
        if any(s == cls.UNHEALTHY for s in statuses):
            return cls.UNHEALTHY
        if any(s in (cls.DEGRADED, cls.UNKNOWN) for s in statuses):
            return cls.DEGRADED
        return cls.HEALTHY


DEFAULT_EXPECTED_STATUS_CODES: FrozenSet[int] = frozenset(HealthcheckDefaults.expected_status_codes)


@dataclass(frozen=True)
class ServiceEndpoint:
    """
    A named, checkable URL for one dependent service.

    Attributes:
        name: Logical service identifier, unique within one check run
        url: Base URL of the service
        expected_status_codes: Codes that count as reachable (configured
            healthcheck defaults when not given)
        is_critical: Informational, carried through to results' callers
        health_path: Optional path appended to url for the check
    """
    name: str
    url: str
    expected_status_codes: Optional[FrozenSet[int]] = None
    is_critical: bool = True
    health_path: Optional[str] = None

    def __post_init__(self):
        # Accept any iterable of codes, store as frozenset
        codes = self.expected_status_codes
        if codes is None:
            codes = get_defaults().healthcheck.expected_status_codes
        object.__setattr__(self, "expected_status_codes", frozenset(codes))

    @property
    def check_url(self) -> str:
        """Full URL to check (url + health_path if present)."""
        if not self.health_path:
            return self.url
        return f"{self.url.rstrip('/')}/{self.health_path.lstrip('/')}"

    def is_expected_status(self, status_code: int) -> bool:
        return status_code in self.expected_status_codes


@dataclass
class ComponentHealth:
    """Result of checking a single endpoint (last attempt after retries)."""
    name: str
    status: HealthStatus
    url: Optional[str] = None
    http_status_code: Optional[int] = None
    response_time_ms: int = 0
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    checked_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result: Dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "status": self.status.value,
            "response_time_ms": self.response_time_ms,
            "checked_at": self.checked_at.isoformat(),
        }
        if self.http_status_code is not None:
            result["http_status_code"] = self.http_status_code
        if self.error:
            result["error"] = self.error
        if self.metadata:
            result["metadata"] = self.metadata
        return result


@dataclass(frozen=True)
class HealthcheckResult:
    """
    Aggregate of all endpoint results.

    Build with from_components(); overall_status is derived from
    services and never set on its own.
    """
    overall_status: HealthStatus
    services: List[ComponentHealth]
    total_duration_ms: int = 0
    timestamp: datetime = field(default_factory=_utc_now)
    trace_id: Optional[str] = None
    span_id: Optional[str] = None

    @classmethod
    def from_components(
        cls,
        components: Iterable[ComponentHealth],
        total_duration_ms: int,
        trace_id: Optional[str] = None,
        span_id: Optional[str] = None,
    ) -> "HealthcheckResult":
        """Create a result, computing the overall status."""
        services = list(components)
        return cls(
            overall_status=HealthStatus.aggregate(s.status for s in services),
            services=services,
            total_duration_ms=total_duration_ms,
            trace_id=trace_id or None,
            span_id=span_id or None,
        )

    def _count(self, status: HealthStatus) -> int:
        return sum(1 for s in self.services if s.status == status)

    @property
    def healthy_count(self) -> int:
        return self._count(HealthStatus.HEALTHY)

    @property
    def unhealthy_count(self) -> int:
        return self._count(HealthStatus.UNHEALTHY)

    @property
    def degraded_count(self) -> int:
        return self._count(HealthStatus.DEGRADED)

    @property
    def is_healthy(self) -> bool:
        return self.overall_status == HealthStatus.HEALTHY

    def get(self, name: str) -> Optional[ComponentHealth]:
        """Get a service result by endpoint name."""
        for service in self.services:
            if service.name == name:
                return service
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result: Dict[str, Any] = {
            "status": self.overall_status.value,
            "services": [s.to_dict() for s in self.services],
            "healthy_count": self.healthy_count,
            "degraded_count": self.degraded_count,
            "unhealthy_count": self.unhealthy_count,
            "total_duration_ms": self.total_duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.trace_id:
            result["trace_id"] = self.trace_id
            result["span_id"] = self.span_id
        return result


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthStatus",
    "DEFAULT_EXPECTED_STATUS_CODES",
    "ServiceEndpoint",
    "ComponentHealth",
    "HealthcheckResult",
]
