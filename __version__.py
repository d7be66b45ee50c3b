# ============================================================================
# VERSION - HEALTH VERIFICATION
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# ============================================================================
"""
Version information for the health verification library.

This is the single source of truth for the package version.
Updated manually for each release.
"""
# Version format: major.minor.patch
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-14"

# Reported by GET /health/sdk and the X-Health-SDK header
PACKAGE_NAME = "health-verification"
FEATURES = (
    "healthcheck",
    "startup-probe",
    "tracing",
    "telemetry-export",
)
EPOCH = 1
CODENAME = "Health Verification"
