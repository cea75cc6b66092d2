"""
Domain Events Package

Architectural Intent:
- Contains domain events and their shared base class
- Events are the primary mechanism for cross-boundary communication
"""

from anywhere.domain.events.event_base import DomainEvent
from anywhere.domain.events.instance_events import (
    InstanceStatusChanged,
    ReconciliationCompleted,
)

__all__ = [
    "DomainEvent",
    "InstanceStatusChanged",
    "ReconciliationCompleted",
]
