"""
Domain Services Package

Architectural Intent:
- Contains domain services implementing lifecycle business logic
- Pure functions and planners; all I/O stays behind ports
"""

from anywhere.domain.services.reconciliation import (
    ReconciliationPlanner,
    ReconciliationPlan,
)
from anywhere.domain.services.bootstrap import build_user_data, build_watchdog_script

__all__ = [
    "ReconciliationPlanner",
    "ReconciliationPlan",
    "build_user_data",
    "build_watchdog_script",
]
