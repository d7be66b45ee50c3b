# ============================================================================
# OBSERVABILITY
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Tracing facade and telemetry export
# PURPOSE: Spans, sampled telemetry events, batched export
# CREATED: 14 OCT 2026
# ============================================================================
"""
Observability

Thin tracing facade used by the healthcheck engine:
- Spans with trace/span ids, attributes and error flags
- Sampling (errors can always be sampled)
- Buffered telemetry events exported in batches over HTTP
- Latest-value metrics keyed by name and tags

Spans are mirrored onto OpenTelemetry API spans. When the host process
configures an OpenTelemetry SDK, its ids are used and its exporters
receive the spans; otherwise local ids are generated.

Usage:
    tracer = Tracer(TracingConfig.from_env())
    await tracer.start()

    with tracer.start_span("healthcheck.all") as span:
        span.set_attribute("healthcheck.endpoint_count", 3)

    await tracer.aclose()
"""

import asyncio
import json
import logging
import random
import secrets
import time
import traceback
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple, Union

import httpx
from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode

from core.config import TracingDefaults, get_defaults
from __version__ import __version__

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMS
# ============================================================================

class SpanKind(str, Enum):
    """Kind of span in the trace."""
    INTERNAL = "internal"
    CLIENT = "client"
    SERVER = "server"
    PRODUCER = "producer"
    CONSUMER = "consumer"


_OTEL_KINDS = {
    SpanKind.INTERNAL: otel_trace.SpanKind.INTERNAL,
    SpanKind.CLIENT: otel_trace.SpanKind.CLIENT,
    SpanKind.SERVER: otel_trace.SpanKind.SERVER,
    SpanKind.PRODUCER: otel_trace.SpanKind.PRODUCER,
    SpanKind.CONSUMER: otel_trace.SpanKind.CONSUMER,
}


class TelemetryEventType(str, Enum):
    """Types of telemetry events."""
    REQUEST_START = "RequestStart"
    REQUEST_COMPLETE = "RequestComplete"
    REQUEST_ERROR = "RequestError"
    EXCEPTION = "Exception"
    HTTP_ERROR = "HttpError"
    SLOW_REQUEST = "SlowRequest"
    RATE_LIMITED = "RateLimited"
    CLIENT_INITIALIZED = "ClientInitialized"
    CLIENT_DISPOSED = "ClientDisposed"
    CUSTOM = "Custom"


class TelemetrySeverity(str, Enum):
    """Severity levels for telemetry events (ordered)."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other: "TelemetrySeverity") -> bool:
        return self.rank >= other.rank

    def __lt__(self, other: "TelemetrySeverity") -> bool:
        return self.rank < other.rank


_SEVERITY_RANK = {
    TelemetrySeverity.DEBUG: 0,
    TelemetrySeverity.INFO: 1,
    TelemetrySeverity.WARNING: 2,
    TelemetrySeverity.ERROR: 3,
    TelemetrySeverity.CRITICAL: 4,
}


class ErrorCategory(str, Enum):
    """Categories for automatic error classification."""
    AUTHENTICATION = "Authentication"
    AUTHORIZATION = "Authorization"
    NOT_FOUND = "NotFound"
    VALIDATION = "Validation"
    RATE_LIMITED = "RateLimited"
    SERVER_ERROR = "ServerError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    TIMEOUT = "Timeout"
    CONNECTION_FAILURE = "ConnectionFailure"
    DNS_RESOLUTION = "DnsResolution"
    TLS_HANDSHAKE = "TlsHandshake"
    SERIALIZATION = "Serialization"
    CONFIGURATION = "Configuration"
    UNKNOWN = "Unknown"


# ============================================================================
# ERROR CATEGORIZATION
# ============================================================================

_HTTP_STATUS_CATEGORIES = {
    400: ErrorCategory.VALIDATION,
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.AUTHORIZATION,
    404: ErrorCategory.NOT_FOUND,
    422: ErrorCategory.VALIDATION,
    429: ErrorCategory.RATE_LIMITED,
    500: ErrorCategory.SERVER_ERROR,
    502: ErrorCategory.SERVICE_UNAVAILABLE,
    503: ErrorCategory.SERVICE_UNAVAILABLE,
    504: ErrorCategory.TIMEOUT,
}


def categorize_http_status(status_code: int) -> ErrorCategory:
    """Categorize an HTTP status code."""
    if status_code in _HTTP_STATUS_CATEGORIES:
        return _HTTP_STATUS_CATEGORIES[status_code]
    if 400 <= status_code < 500:
        return ErrorCategory.VALIDATION
    if status_code >= 500:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.UNKNOWN


def _message_has(exc: BaseException, *needles: str) -> bool:
    message = str(exc).lower()
    return any(needle in message for needle in needles)


# Evaluated top to bottom, first match wins
_EXCEPTION_CATEGORIES: List[Tuple[Callable[[BaseException], bool], ErrorCategory]] = [
    (lambda e: isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)),
     ErrorCategory.TIMEOUT),
    (lambda e: isinstance(e, httpx.TransportError) and _message_has(e, "ssl", "tls", "certificate"),
     ErrorCategory.TLS_HANDSHAKE),
    (lambda e: isinstance(e, httpx.TransportError)
     and _message_has(e, "dns", "name or service not known", "getaddrinfo", "no such host"),
     ErrorCategory.DNS_RESOLUTION),
    (lambda e: isinstance(e, (httpx.TransportError, ConnectionError)),
     ErrorCategory.CONNECTION_FAILURE),
    (lambda e: isinstance(e, json.JSONDecodeError), ErrorCategory.SERIALIZATION),
    (lambda e: isinstance(e, (ValueError, RuntimeError)), ErrorCategory.CONFIGURATION),
]


def categorize_exception(exc: BaseException) -> ErrorCategory:
    """Categorize an exception."""
    if isinstance(exc, httpx.HTTPStatusError):
        return categorize_http_status(exc.response.status_code)
    for predicate, category in _EXCEPTION_CATEGORIES:
        if predicate(exc):
            return category
    return ErrorCategory.UNKNOWN


_CATEGORY_SEVERITY = {
    ErrorCategory.NOT_FOUND: TelemetrySeverity.WARNING,
    ErrorCategory.VALIDATION: TelemetrySeverity.WARNING,
    ErrorCategory.RATE_LIMITED: TelemetrySeverity.WARNING,
    ErrorCategory.DNS_RESOLUTION: TelemetrySeverity.CRITICAL,
    ErrorCategory.TLS_HANDSHAKE: TelemetrySeverity.CRITICAL,
    ErrorCategory.CONFIGURATION: TelemetrySeverity.CRITICAL,
}


def default_severity(category: ErrorCategory) -> TelemetrySeverity:
    """Get the default severity for an error category."""
    return _CATEGORY_SEVERITY.get(category, TelemetrySeverity.ERROR)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class TracingConfig:
    """Configuration for the tracer."""
    service_name: str = "health-verification"
    service_version: str = __version__
    environment: str = "development"

    # Batched HTTP export
    telemetry_enabled: bool = False
    telemetry_endpoint: str = "https://telemetry.localhost/v1/telemetry"
    telemetry_api_key: Optional[str] = None

    # OpenTelemetry (spans go to whatever SDK the host configured)
    otlp_enabled: bool = False
    otlp_endpoint: Optional[str] = None

    # Sampling
    sample_rate: float = 1.0
    always_sample_errors: bool = True

    # Batching
    buffer_size: int = 100
    flush_interval_seconds: float = 5.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.1

    # Added to every span
    custom_tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_defaults(cls, defaults: TracingDefaults) -> "TracingConfig":
        """Create config from a TracingDefaults group."""
        return cls(
            service_name=defaults.service_name,
            service_version=defaults.service_version,
            environment=defaults.environment,
            telemetry_enabled=defaults.telemetry_enabled,
            telemetry_endpoint=defaults.telemetry_endpoint,
            telemetry_api_key=defaults.telemetry_api_key,
            otlp_enabled=defaults.otlp_enabled,
            otlp_endpoint=defaults.otlp_endpoint,
            sample_rate=defaults.sample_rate,
            always_sample_errors=defaults.always_sample_errors,
            buffer_size=defaults.buffer_size,
            flush_interval_seconds=defaults.flush_interval_seconds,
            max_retries=defaults.max_retries,
        )

    @classmethod
    def from_env(cls) -> "TracingConfig":
        """Create config from environment variables."""
        return cls.from_defaults(get_defaults().tracing)


# ============================================================================
# TELEMETRY EVENTS
# ============================================================================

@dataclass
class TelemetryEvent:
    """A telemetry event waiting for export."""
    type: TelemetryEventType = TelemetryEventType.CUSTOM
    severity: TelemetrySeverity = TelemetrySeverity.INFO
    name: Optional[str] = None
    message: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    duration_ms: Optional[int] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the export wire format."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "traceId": self.trace_id,
            "spanId": self.span_id,
            "eventType": self.type.value,
            "name": self.name,
            "errorCategory": self.error_category.value if self.error_category else None,
            "severity": self.severity.value,
            "message": self.message,
            "attributes": self.attributes,
            "stackTrace": self.stack_trace,
            "durationMs": self.duration_ms,
        }


# ============================================================================
# SPANS
# ============================================================================

_current_span: ContextVar[Optional["Span"]] = ContextVar("current_span", default=None)


def _otel_value(value: Any) -> Any:
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@dataclass
class Span:
    """
    A sampled, recording span.

    Use as a context manager: entering makes it the current span (child
    spans and events pick up its trace id), exiting ends it and records
    any exception that escaped the block.
    """
    name: str
    kind: SpanKind = SpanKind.CLIENT
    trace_id: str = ""
    span_id: str = ""
    parent_span_id: Optional[str] = None
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    status_message: Optional[str] = None

    _otel_span: Any = None
    _tracer: Optional["Tracer"] = None
    _token: Any = None

    def set_attribute(self, key: str, value: Any) -> None:
        """Set a span attribute."""
        self.attributes[key] = value
        if self._otel_span is not None:
            self._otel_span.set_attribute(key, _otel_value(value))

    def set_error(self, is_error: bool, message: Optional[str] = None) -> None:
        """Mark the span as an error."""
        self.is_error = is_error
        self.attributes["error"] = is_error
        if message:
            self.status_message = message
        if self._otel_span is not None:
            self._otel_span.set_attribute("error", is_error)
            if is_error:
                self._otel_span.set_status(Status(StatusCode.ERROR, message))

    def add_event(
        self,
        event_type: Union[TelemetryEventType, str],
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add an event to the span."""
        name = event_type.value if isinstance(event_type, TelemetryEventType) else event_type
        self.events.append({
            "name": name,
            "timestamp": time.time(),
            "attributes": attributes or {},
        })
        if self._otel_span is not None:
            self._otel_span.add_event(
                name,
                attributes={k: _otel_value(v) for k, v in (attributes or {}).items()},
            )

    def record_exception(self, exc: BaseException) -> None:
        """Record an exception on the span and emit an error event."""
        self.set_error(True, str(exc))
        self.set_attribute("exception.type", f"{type(exc).__module__}.{type(exc).__name__}")
        self.set_attribute("exception.message", str(exc))

        category = categorize_exception(exc)
        if self._tracer is not None:
            self._tracer.record_event(TelemetryEvent(
                type=TelemetryEventType.EXCEPTION,
                severity=TelemetrySeverity.ERROR,
                error_category=category,
                message=str(exc),
                stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                trace_id=self.trace_id,
                span_id=self.span_id,
            ))

    def end(self) -> None:
        """End the span."""
        if self.end_time is not None:
            return
        self.end_time = time.monotonic()
        if self._otel_span is not None:
            self._otel_span.end()
        logger.debug(f"Span completed: {self.name} ({self.duration_ms:.2f}ms)")

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        end = self.end_time if self.end_time is not None else time.monotonic()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "duration_ms": self.duration_ms,
            "attributes": self.attributes,
            "events": self.events,
            "is_error": self.is_error,
            "status_message": self.status_message,
        }

    def __enter__(self) -> "Span":
        self._token = _current_span.set(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and isinstance(exc, Exception):
            self.record_exception(exc)
        if self._token is not None:
            _current_span.reset(self._token)
            self._token = None
        self.end()
        return False


class NoOpSpan:
    """Span returned when tracing is disabled or the span was not sampled."""

    trace_id = ""
    span_id = ""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_error(self, is_error: bool, message: Optional[str] = None) -> None:
        pass

    def add_event(self, event_type, attributes=None) -> None:
        pass

    def record_exception(self, exc: BaseException) -> None:
        pass

    def end(self) -> None:
        pass

    def __enter__(self) -> "NoOpSpan":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def get_current_span() -> Optional[Span]:
    """Get the span entered most recently in this task/context."""
    return _current_span.get()


# ============================================================================
# TRACER
# ============================================================================

class Tracer:
    """
    Tracer with sampling and batched event export.

    Enabled when telemetry export or OTLP is configured. A disabled
    tracer hands out NoOpSpans and drops events.
    """

    def __init__(
        self,
        config: Optional[TracingConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize tracer.

        Args:
            config: Tracing config (uses env vars if None)
            client: Optional HTTP client for export (caller keeps ownership)
            rng: Optional random source for sampling decisions
        """
        self.config = config or TracingConfig.from_env()
        self._client = client
        self._owns_client = client is None
        self._random = rng or random.Random()
        self._buffer: Deque[TelemetryEvent] = deque()
        self._context: Dict[str, str] = {}
        self._metrics: Dict[str, float] = {}
        self._flush_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self._otel_tracer = otel_trace.get_tracer(
            self.config.service_name, self.config.service_version
        )

        self.record_event(TelemetryEvent(
            type=TelemetryEventType.CLIENT_INITIALIZED,
            severity=TelemetrySeverity.INFO,
            message=(
                f"Tracer initialized (telemetry: {self.config.telemetry_enabled}, "
                f"otlp: {self.config.otlp_enabled})"
            ),
        ))

    @property
    def enabled(self) -> bool:
        """Whether any exporter is configured."""
        return self.config.telemetry_enabled or self.config.otlp_enabled

    @property
    def pending_events(self) -> int:
        """Number of buffered events awaiting export."""
        return len(self._buffer)

    @property
    def metrics(self) -> Dict[str, float]:
        """Snapshot of latest metric values."""
        return dict(self._metrics)

    # ------------------------------------------------------------------
    # SPANS
    # ------------------------------------------------------------------

    def _should_sample(self) -> bool:
        return self._random.random() < self.config.sample_rate

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.CLIENT,
    ) -> Union[Span, NoOpSpan]:
        """
        Start a new span.

        Args:
            name: Operation name
            kind: Span kind

        Returns:
            Span (or NoOpSpan when disabled / not sampled)
        """
        if not self.enabled or not self._should_sample():
            return NoOpSpan()

        parent = get_current_span()
        otel_context = None
        if parent is not None and parent._otel_span is not None:
            otel_context = otel_trace.set_span_in_context(parent._otel_span)

        otel_span = self._otel_tracer.start_span(
            name, context=otel_context, kind=_OTEL_KINDS[kind]
        )
        span_context = otel_span.get_span_context()
        if span_context.is_valid:
            trace_id = format(span_context.trace_id, "032x")
            span_id = format(span_context.span_id, "016x")
        else:
            trace_id = parent.trace_id if parent is not None else secrets.token_hex(16)
            span_id = secrets.token_hex(8)

        span = Span(
            name=name,
            kind=kind,
            trace_id=trace_id,
            span_id=span_id,
            parent_span_id=parent.span_id if parent is not None else None,
            _otel_span=otel_span,
            _tracer=self,
        )

        span.set_attribute("service.name", self.config.service_name)
        span.set_attribute("service.version", self.config.service_version)
        span.set_attribute("deployment.environment", self.config.environment)
        for key, value in self._context.items():
            span.set_attribute(key, value)
        for key, value in self.config.custom_tags.items():
            span.set_attribute(key, value)

        return span

    # ------------------------------------------------------------------
    # EVENTS & METRICS
    # ------------------------------------------------------------------

    def record_event(self, event: TelemetryEvent) -> None:
        """Record a telemetry event (sampled unless it is an error)."""
        if not self.enabled:
            return

        is_error = event.severity >= TelemetrySeverity.ERROR
        if not (is_error and self.config.always_sample_errors) and not self._should_sample():
            return

        current = get_current_span()
        if current is not None:
            event.trace_id = event.trace_id or current.trace_id
            event.span_id = event.span_id or current.span_id

        self._buffer.append(event)

        if len(self._buffer) >= self.config.buffer_size:
            self._schedule_flush()

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record a metric value (latest value wins)."""
        if not self.enabled:
            return
        self._metrics[self._metric_key(name, tags)] = value

    @staticmethod
    def _metric_key(name: str, tags: Optional[Dict[str, str]]) -> str:
        if not tags:
            return name
        return name + "".join(f"|{k}={tags[k]}" for k in sorted(tags))

    def set_context(self, key: str, value: str) -> None:
        """Set an attribute added to every subsequent span."""
        self._context[key] = value

    def get_context(self, key: str) -> Optional[str]:
        """Get a context value."""
        return self._context.get(key)

    # ------------------------------------------------------------------
    # EXPORT
    # ------------------------------------------------------------------

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: picked up by the periodic flush or aclose()
            return
        task = loop.create_task(self.flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def flush(self) -> int:
        """
        Drain the buffer and export one batch.

        Returns:
            Number of events drained
        """
        if not self.enabled:
            return 0

        events: List[TelemetryEvent] = []
        while self._buffer:
            events.append(self._buffer.popleft())

        if not events:
            return 0

        if self.config.telemetry_enabled:
            await self._export(events)

        return len(events)

    async def _export(self, events: List[TelemetryEvent]) -> bool:
        """POST a batch to the telemetry endpoint. Never raises."""
        if not self.config.telemetry_api_key:
            logger.debug(f"Telemetry API key not set, dropping {len(events)} events")
            return False

        batch = {
            "serviceName": self.config.service_name,
            "serviceVersion": self.config.service_version,
            "environment": self.config.environment,
            "sdkVersion": __version__,
            "batchTimestamp": datetime.now(timezone.utc).isoformat(),
            "events": [e.to_dict() for e in events],
        }
        try:
            body = json.dumps(batch, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Telemetry batch not serializable, dropping {len(events)} events: {e}")
            return False

        url = self.config.telemetry_endpoint.rstrip("/") + "/events"
        headers = {
            "X-Telemetry-Api-Key": self.config.telemetry_api_key,
            "Content-Type": "application/json",
        }

        for attempt in range(self.config.max_retries):
            try:
                response = await self._get_client().post(url, content=body, headers=headers)
                if response.is_success:
                    return True

                # 4xx other than 429 will not succeed on retry
                if 400 <= response.status_code < 500 and response.status_code != 429:
                    logger.warning(
                        f"Telemetry export rejected with {response.status_code}, "
                        f"dropping {len(events)} events"
                    )
                    return False
            except httpx.HTTPError as e:
                logger.debug(f"Telemetry export attempt {attempt + 1} failed: {e}")

            await asyncio.sleep(self.config.retry_backoff_seconds * (2 ** attempt))

        logger.warning(f"Telemetry export failed after {self.config.max_retries} attempts")
        return False

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval_seconds)
            try:
                await self.flush()
            except Exception as e:
                logger.warning(f"Periodic telemetry flush failed: {e}")

    async def start(self) -> None:
        """Start the periodic flush loop (no-op when disabled)."""
        if self.enabled and self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def aclose(self) -> None:
        """Stop the flush loop, export remaining events, release the client."""
        if self._closed:
            return
        self._closed = True

        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        self.record_event(TelemetryEvent(
            type=TelemetryEventType.CLIENT_DISPOSED,
            severity=TelemetrySeverity.INFO,
            message="Tracer disposed",
        ))
        await self.flush()

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Tracer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SpanKind",
    "TelemetryEventType",
    "TelemetrySeverity",
    "ErrorCategory",
    "categorize_http_status",
    "categorize_exception",
    "default_severity",
    "TracingConfig",
    "TelemetryEvent",
    "Span",
    "NoOpSpan",
    "get_current_span",
    "Tracer",
]
