# ============================================================================
# CLASSIFICATION RULE TESTS
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Tests - Transport error and suggested fix tables
# PURPOSE: Verify each rule alone and the table ordering
# CREATED: 14 OCT 2026
# ============================================================================
"""
Classification Rule Tests

Run with:
    pytest tests/test_rules.py -v
"""

import httpx
import pytest

from health.rules import (
    SUGGESTED_FIX_RULES,
    TRANSPORT_ERROR_RULES,
    simplify_transport_error,
    suggest_fix,
)


def _rule(table, name):
    return next(r for r in table if r.name == name)


# ============================================================================
# TRANSPORT ERRORS
# ============================================================================

class TestSimplifyTransportError:
    """simplify_transport_error message mapping."""

    @pytest.mark.parametrize("message", [
        "[Errno 111] Connection refused",
        "All connection attempts failed",
        "Connect call failed ('127.0.0.1', 4200)",
        "No connection could be made because the target machine actively refused it",
    ])
    def test_connection_refused(self, message):
        assert simplify_transport_error(httpx.ConnectError(message)) == (
            "Connection refused - service not running"
        )

    @pytest.mark.parametrize("message", [
        "[Errno -2] Name or service not known",
        "[Errno 8] nodename nor servname provided, or not known",
        "[Errno 11001] getaddrinfo failed",
        "[Errno -3] Temporary failure in name resolution",
    ])
    def test_dns_failure(self, message):
        assert simplify_transport_error(httpx.ConnectError(message)) == (
            "Host not found - DNS resolution failed"
        )

    def test_tls_error(self):
        exc = httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed")
        assert simplify_transport_error(exc) == "SSL/TLS error"

    def test_network_unreachable(self):
        exc = httpx.ConnectError("[Errno 101] Network is unreachable")
        assert simplify_transport_error(exc) == "Network unreachable"

    def test_fallback_is_first_line(self):
        exc = httpx.RemoteProtocolError("Server disconnected\nwithout sending a response")
        assert simplify_transport_error(exc) == "Server disconnected"

    def test_empty_message_uses_cause(self):
        exc = httpx.ReadError("")
        exc.__cause__ = ConnectionRefusedError("[Errno 111] Connection refused")
        assert simplify_transport_error(exc) == "Connection refused - service not running"

    def test_empty_message_without_cause_uses_type_name(self):
        assert simplify_transport_error(httpx.ReadError("")) == "ReadError"

    def test_refused_checked_before_tls(self):
        """First match wins: a refused TLS connect reads as refused."""
        exc = httpx.ConnectError("SSL handshake: connection refused")
        assert simplify_transport_error(exc) == "Connection refused - service not running"

    def test_rule_alone(self):
        rule = _rule(TRANSPORT_ERROR_RULES, "network_unreachable")
        assert rule.matches("network is unreachable", "ConnectError")
        assert not rule.matches("connection refused", "ConnectError")


# ============================================================================
# SUGGESTED FIXES
# ============================================================================

class TestSuggestFix:
    """suggest_fix hint lookup."""

    def test_database_connection(self):
        fix = suggest_fix(ValueError("bad database connection"))
        assert fix is not None
        assert "database" in fix.lower()

    def test_postgres_connection(self):
        fix = suggest_fix(RuntimeError("connection to postgres server failed"))
        assert "database connection string" in fix

    def test_redis(self):
        assert "Redis" in suggest_fix(ConnectionError("Redis timeout"))

    def test_migration(self):
        assert "migration" in suggest_fix(RuntimeError("table 'users' already exists")).lower()

    def test_module_loading(self):
        fix = suggest_fix(ModuleNotFoundError("No module named 'yaml'"))
        assert "dependencies" in fix

    def test_type_error(self):
        assert "Type error" in suggest_fix(TypeError("expected str, got int"))

    def test_route(self):
        assert "route" in suggest_fix(ValueError("duplicate route /health")).lower()

    def test_no_match(self):
        assert suggest_fix(KeyError("missing")) is None

    def test_connection_alone_is_not_database(self):
        rule = _rule(SUGGESTED_FIX_RULES, "database_connection")
        assert not rule.matches("connection reset by peer", "ConnectionError")
        assert rule.matches("mysql connection lost", "OperationalError")

    def test_rule_names_unique(self):
        names = [r.name for r in SUGGESTED_FIX_RULES + TRANSPORT_ERROR_RULES]
        assert len(names) == len(set(names))
