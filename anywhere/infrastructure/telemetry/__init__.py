"""
Telemetry Infrastructure

Architectural Intent:
- OpenTelemetry integration for observability
- Metrics fed from domain events on the event bus
"""

from anywhere.infrastructure.telemetry.otel_exporter import (
    OTELExporter,
    OTELConfig,
    create_exporter,
)

__all__ = [
    "OTELExporter",
    "OTELConfig",
    "create_exporter",
]
