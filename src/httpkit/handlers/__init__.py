"""
=============================================================================
BUILT-IN HANDLERS
=============================================================================

    ┌──────────────────────┬──────────────────────────────────────────────┐
    │ Endpoint             │ Handler                                      │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │ GET  /health         │ HealthHandler (health.py)                    │
    │ GET  /metrics        │ metrics_handler (middleware/metrics.py)      │
    │ GET  /debug/pprof/*  │ mount_profiling (profiling.py)               │
    └──────────────────────┴──────────────────────────────────────────────┘

All of them are mounted through Router.enable_*().

=============================================================================
"""

from .health import HealthAggregator, HealthCheck, HealthCheckResponse, HealthHandler
from .profiling import mount_profiling

__all__ = [
    "HealthAggregator",
    "HealthCheck",
    "HealthCheckResponse",
    "HealthHandler",
    "mount_profiling",
]
