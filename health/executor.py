# ============================================================================
# HEALTHCHECK ENGINE
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Endpoint probing with retry and aggregation
# PURPOSE: Check N service endpoints and fold results into one status
# CREATED: 14 OCT 2026
# ============================================================================
"""
Healthcheck Engine

Checks configured service endpoints with:
- Parallel or sequential dispatch (results keep input order)
- Per-request timeout
- Per-endpoint retry (return on first healthy, else last attempt)
- Result aggregation with strict status precedence

Failure model:
    Endpoint failures never raise. Unexpected status codes, timeouts,
    transport errors and any other exception become an unhealthy
    ComponentHealth with a descriptive error. Only caller cancellation
    (asyncio.CancelledError) propagates.

Usage:
    async with HealthcheckEngine(HealthcheckOptions.production()) as engine:
        result = await engine.check_all()
        if not result.is_healthy:
            ...
"""

import asyncio
import logging
import time
from typing import List, Optional, Union

import httpx

from core.logging import log_context
from core.observability import NoOpSpan, Span, SpanKind, Tracer
from health.core import (
    HealthStatus,
    ServiceEndpoint,
    ComponentHealth,
    HealthcheckResult,
)
from health.options import HealthcheckOptions
from health.rules import simplify_transport_error

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))


def _content_length(response: httpx.Response) -> int:
    # Malformed or missing header reads as 0
    value = response.headers.get("content-length", "").strip()
    return int(value) if value.isdigit() else 0


class HealthcheckEngine:
    """
    Checks service endpoints and aggregates their health.

    The engine owns its httpx.AsyncClient (and closes it in aclose())
    unless a client was injected, in which case the caller keeps
    ownership. One client, and its connection pool, is shared by all
    checks of this engine.

    An injected client keeps its own redirect limit and TLS verification;
    options.max_redirects and options.verify_tls only apply to a client
    the engine creates. Timeout and follow_redirects are sent per request.
    """

    def __init__(
        self,
        options: Optional[HealthcheckOptions] = None,
        tracer: Optional[Tracer] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize engine.

        Args:
            options: Healthcheck options (env defaults if None)
            tracer: Optional tracer for spans and metrics
            client: Optional HTTP client (caller retains ownership)
        """
        self.options = options or HealthcheckOptions.from_defaults()
        self.tracer = tracer

        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            self._client = self._create_client()
            self._owns_client = True

        self._closed = False

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=self.options.max_redirects,
            verify=self.options.verify_tls,
            timeout=httpx.Timeout(self.options.timeout),
        )

    def _start_span(self, name: str) -> Union[Span, NoOpSpan]:
        if self.options.enable_tracing and self.tracer is not None:
            return self.tracer.start_span(name, SpanKind.CLIENT)
        return NoOpSpan()

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def check_all(self) -> HealthcheckResult:
        """
        Check all configured endpoints.

        Every endpoint is checked to completion regardless of the others'
        outcomes.

        Returns:
            Aggregated result, services in configuration order
        """
        endpoints = list(self.options.custom_endpoints)

        with self._start_span("healthcheck.all") as span:
            span.set_attribute("healthcheck.endpoint_count", len(endpoints))
            span.set_attribute("healthcheck.parallel", self.options.parallel)

            start = time.monotonic()
            if self.options.parallel and len(endpoints) > 1:
                services = await self._check_parallel(endpoints)
            else:
                services = await self._check_sequential(endpoints)
            total_duration_ms = _elapsed_ms(start)

            result = HealthcheckResult.from_components(
                services,
                total_duration_ms,
                trace_id=span.trace_id,
                span_id=span.span_id,
            )

            span.set_attribute("healthcheck.status", result.overall_status.value)
            span.set_attribute("healthcheck.healthy_count", result.healthy_count)
            span.set_attribute("healthcheck.unhealthy_count", result.unhealthy_count)
            span.set_attribute("healthcheck.total_duration_ms", result.total_duration_ms)
            if result.overall_status == HealthStatus.UNHEALTHY:
                span.set_error(True)

        logger.info(
            f"Healthcheck complete: {result.overall_status.value} "
            f"({result.healthy_count}/{len(services)} healthy, {total_duration_ms}ms)"
        )
        return result

    async def check(self, endpoint: ServiceEndpoint) -> ComponentHealth:
        """
        Check a single endpoint, retrying non-healthy outcomes.

        Returns:
            First healthy attempt, otherwise the last attempt's result
        """
        url = endpoint.check_url

        with self._start_span(f"healthcheck.{endpoint.name}") as span:
            span.set_attribute("healthcheck.service", endpoint.name)
            span.set_attribute("healthcheck.url", url)

            with log_context(service=endpoint.name, endpoint=url, trace_id=span.trace_id or None):
                result = await self._check_with_retry(endpoint)

                if result.status == HealthStatus.HEALTHY:
                    logger.debug(f"{endpoint.name}: healthy ({result.response_time_ms}ms)")
                else:
                    logger.warning(
                        f"{endpoint.name}: {result.status.value} "
                        f"({result.response_time_ms}ms) {result.error or ''}".rstrip()
                    )

            span.set_attribute("healthcheck.status", result.status.value)
            span.set_attribute("healthcheck.response_time_ms", result.response_time_ms)
            if result.http_status_code is not None:
                span.set_attribute("http.status_code", result.http_status_code)
            if result.status == HealthStatus.UNHEALTHY:
                span.set_error(True, result.error)
                if result.error:
                    span.set_attribute("error.message", result.error)

            if self.tracer is not None:
                self.tracer.record_metric(
                    "healthcheck.response_time_ms",
                    result.response_time_ms,
                    tags={"service": endpoint.name},
                )

        return result

    async def is_healthy(self, endpoint: ServiceEndpoint) -> bool:
        """Quick check whether a single endpoint is healthy."""
        result = await self.check(endpoint)
        return result.status == HealthStatus.HEALTHY

    # ------------------------------------------------------------------
    # DISPATCH
    # ------------------------------------------------------------------

    async def _check_parallel(self, endpoints: List[ServiceEndpoint]) -> List[ComponentHealth]:
        # gather() returns results in argument order, not completion order
        return list(await asyncio.gather(*(self.check(e) for e in endpoints)))

    async def _check_sequential(self, endpoints: List[ServiceEndpoint]) -> List[ComponentHealth]:
        results = []
        for endpoint in endpoints:
            results.append(await self.check(endpoint))
        return results

    async def _check_with_retry(self, endpoint: ServiceEndpoint) -> ComponentHealth:
        attempts = self.options.attempts
        last_result: Optional[ComponentHealth] = None

        for attempt in range(attempts):
            if attempt > 0:
                await asyncio.sleep(self.options.retry_delay)

            last_result = await self._check_endpoint(endpoint)

            if last_result.status == HealthStatus.HEALTHY:
                return last_result

            if attempt + 1 < attempts:
                logger.debug(
                    f"{endpoint.name}: attempt {attempt + 1}/{attempts} "
                    f"{last_result.status.value}, retrying in {self.options.retry_delay}s"
                )

        return last_result

    async def _check_endpoint(self, endpoint: ServiceEndpoint) -> ComponentHealth:
        """One attempt. Never raises except for caller cancellation."""
        url = endpoint.check_url
        start = time.monotonic()

        try:
            response = await self._client.get(
                url,
                timeout=self.options.timeout,
                follow_redirects=True,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return self._unhealthy(endpoint, url, start, "Request timed out")
        except httpx.TransportError as e:
            return self._unhealthy(endpoint, url, start, simplify_transport_error(e))
        except Exception as e:
            return self._unhealthy(endpoint, url, start, str(e) or type(e).__name__)

        response_time_ms = _elapsed_ms(start)
        status_code = response.status_code

        if not endpoint.is_expected_status(status_code):
            status = HealthStatus.UNHEALTHY
            error = f"Unexpected status: {status_code}"
        elif response_time_ms >= self.options.degraded_threshold_ms:
            status = HealthStatus.DEGRADED
            error = None
        else:
            status = HealthStatus.HEALTHY
            error = None

        metadata = None
        if self.options.include_metadata:
            content_type = response.headers.get("content-type", "unknown")
            metadata = {
                "content_length": _content_length(response),
                "content_type": content_type.split(";")[0].strip() or "unknown",
            }

        return ComponentHealth(
            name=endpoint.name,
            url=url,
            status=status,
            http_status_code=status_code,
            response_time_ms=response_time_ms,
            error=error,
            metadata=metadata,
        )

    @staticmethod
    def _unhealthy(
        endpoint: ServiceEndpoint,
        url: str,
        start: float,
        error: str,
    ) -> ComponentHealth:
        return ComponentHealth(
            name=endpoint.name,
            url=url,
            status=HealthStatus.UNHEALTHY,
            response_time_ms=_elapsed_ms(start),
            error=error,
        )

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the HTTP client if the engine owns it."""
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HealthcheckEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# ============================================================================
# CONVENIENCE ENTRY POINTS
# ============================================================================

async def check_local(
    tracer: Optional[Tracer] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HealthcheckResult:
    """Check the local development environment (Local preset)."""
    async with HealthcheckEngine(HealthcheckOptions.local(), tracer=tracer, client=client) as engine:
        return await engine.check_all()


async def check_production(
    tracer: Optional[Tracer] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> HealthcheckResult:
    """Check the production environment (Production preset)."""
    async with HealthcheckEngine(HealthcheckOptions.production(), tracer=tracer, client=client) as engine:
        return await engine.check_all()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthcheckEngine",
    "check_local",
    "check_production",
]
