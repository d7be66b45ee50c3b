# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Core module initialization
# PURPOSE: Shared configuration, logging and observability
# CREATED: 14 OCT 2026
# ============================================================================
"""
Core Module

Ambient services shared by the health verification engine:
- core.config: environment-driven defaults
- core.logging: structured logging with context
- core.observability: tracing facade with sampling and batched export
"""

from core.config import get_defaults, Defaults

__all__ = [
    "get_defaults",
    "Defaults",
]
