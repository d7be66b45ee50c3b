# ============================================================================
# HEURISTIC CLASSIFICATION RULES
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Error simplification and remediation hints
# PURPOSE: Ordered (predicate, result) tables for human-readable errors
# CREATED: 14 OCT 2026
# ============================================================================
"""
Heuristic Classification Rules

Two ordered rule tables, evaluated top to bottom, first match wins:

TRANSPORT_ERROR_RULES
    Turns a transport exception into a short message for
    ComponentHealth.error. Unmatched errors fall back to the first line
    of the raw message.

SUGGESTED_FIX_RULES
    Maps a startup exception to a remediation hint stored in the probe's
    error details. Unmatched errors get no hint; the table is allowed to
    be incomplete.

Each rule is a Rule(name, predicate, result) so it can be tested alone
and new rules slot in at the right precedence.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional


@dataclass(frozen=True)
class Rule:
    """A named (predicate, result) pair."""
    name: str
    predicate: Callable[[str, str], bool]
    result: str

    def matches(self, message: str, type_name: str) -> bool:
        return self.predicate(message, type_name)


def _contains(*needles: str) -> Callable[[str, str], bool]:
    return lambda message, _type: any(n in message for n in needles)


def _error_text(exc: BaseException) -> str:
    message = str(exc)
    if not message and exc.__cause__ is not None:
        message = str(exc.__cause__)
    return message


# ============================================================================
# TRANSPORT ERRORS
# ============================================================================

TRANSPORT_ERROR_RULES: List[Rule] = [
    Rule(
        "connection_refused",
        _contains(
            "connection refused",
            "connect call failed",
            "all connection attempts failed",
            "errno 111",
            "actively refused",
        ),
        "Connection refused - service not running",
    ),
    Rule(
        "dns_failure",
        _contains(
            "no such host",
            "name or service not known",
            "nodename nor servname",
            "getaddrinfo failed",
            "temporary failure in name resolution",
        ),
        "Host not found - DNS resolution failed",
    ),
    Rule(
        "tls_error",
        _contains("ssl", "certificate", "tls"),
        "SSL/TLS error",
    ),
    Rule(
        "network_unreachable",
        _contains("network unreachable", "network is unreachable"),
        "Network unreachable",
    ),
]


def simplify_transport_error(exc: BaseException) -> str:
    """Short, categorized message for a transport-level failure."""
    raw = _error_text(exc)
    message = raw.lower()
    type_name = type(exc).__name__
    for rule in TRANSPORT_ERROR_RULES:
        if rule.matches(message, type_name):
            return rule.result
    first_line = raw.split("\n")[0].strip()
    return first_line or type_name


# ============================================================================
# SUGGESTED FIXES
# ============================================================================

SUGGESTED_FIX_RULES: List[Rule] = [
    Rule(
        "route_configuration",
        _contains("catch-all parameter", "route template", "duplicate route"),
        "Check route definitions: two handlers may share a path, or a "
        "path parameter is declared twice.",
    ),
    Rule(
        "database_connection",
        lambda m, _t: "connection" in m and any(
            db in m for db in ("database", "mysql", "postgres", "psycopg", "sqlalchemy")
        ),
        "Check the database connection string and that the database server "
        "is running and reachable. Verify pending migrations have been applied.",
    ),
    Rule(
        "redis_connection",
        _contains("redis", "connectionmultiplexer"),
        "Check the Redis connection settings and that Redis is running.",
    ),
    Rule(
        "migration",
        lambda m, _t: "migration" in m or ("table" in m and "exists" in m),
        "Database migration issue. Re-run migrations and check for a "
        "partially applied revision.",
    ),
    Rule(
        "module_loading",
        lambda _m, t: t in ("ImportError", "ModuleNotFoundError"),
        "Module loading error. Check that all dependencies are installed "
        "and their versions match the lock file.",
    ),
    Rule(
        "type_error",
        lambda _m, t: t == "TypeError",
        "Type error during startup. Check the types passed to constructors "
        "and factory functions in the startup path.",
    ),
]


def suggest_fix(exc: BaseException) -> Optional[str]:
    """Best-effort remediation hint for a startup exception."""
    message = _error_text(exc).lower()
    type_name = type(exc).__name__
    for rule in SUGGESTED_FIX_RULES:
        if rule.matches(message, type_name):
            return rule.result
    return None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Rule",
    "TRANSPORT_ERROR_RULES",
    "SUGGESTED_FIX_RULES",
    "simplify_transport_error",
    "suggest_fix",
]
