# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 14 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for healthchecks,
tracing and the startup probe.
"""

from core.config.defaults import (
    HealthcheckDefaults,
    TracingDefaults,
    ProbeDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "HealthcheckDefaults",
    "TracingDefaults",
    "ProbeDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
