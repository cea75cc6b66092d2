"""
OpenTelemetry Exporter

Architectural Intent:
- Exports orchestrator metrics to OTLP-compatible backends
- Subscribes to the event bus; use cases never call telemetry directly
- Metrics cover status transitions and every reconciliation cycle

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
- Validation in __post_init__ prevents accidental plaintext export
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from urllib.parse import urlparse
import logging
from datetime import datetime, UTC

from anywhere.domain.events.instance_events import (
    InstanceStatusChanged,
    ReconciliationCompleted,
)
from anywhere.domain.ports.event_bus_port import EventBusPort

logger = logging.getLogger(__name__)


@dataclass
class OTELConfig:
    endpoint: str = ""
    service_name: str = "anywhere"
    environment: str = "development"
    export_interval: int = 5
    insecure: bool = False

    def __post_init__(self) -> None:
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
            if parsed.scheme == "http" and not is_localhost and not self.insecure:
                raise ValueError(
                    f"Non-localhost HTTP endpoint '{self.endpoint}' requires "
                    "insecure=True or use https://. "
                    "Set insecure=True to explicitly allow plaintext export."
                )


class OTELExporter:
    """
    OpenTelemetry metrics exporter for the orchestrator.

    Metric values are always buffered locally; once the SDK is initialized
    they are also recorded on OTLP instruments.
    """

    def __init__(self, config: OTELConfig):
        self.config = config
        self._initialized = False
        self._metrics_buffer: list[dict[str, Any]] = []
        self._meter: Any = None
        self._counters: dict[str, Any] = {}
        self._histograms: dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize the OpenTelemetry SDK and OTLP metric exporter."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        try:
            from opentelemetry import metrics
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.sdk.resources import Resource, SERVICE_NAME
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )

            resource = Resource(
                attributes={
                    SERVICE_NAME: self.config.service_name,
                    "environment": self.config.environment,
                }
            )
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=self.config.endpoint, insecure=self.config.insecure
                ),
                export_interval_millis=self.config.export_interval * 1000,
            )
            provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
            metrics.set_meter_provider(provider)
            self._meter = metrics.get_meter(__name__)
            self._initialized = True
            logger.info("OTEL metrics exporting to %s", self.config.endpoint)

        except Exception as e:
            logger.error("Failed to initialize OTEL: %s", e)
            self._initialized = False

    def attach(self, event_bus: EventBusPort) -> None:
        event_bus.subscribe(InstanceStatusChanged, self.on_status_changed)
        event_bus.subscribe(ReconciliationCompleted, self.on_reconciliation_completed)

    def _buffer(self, name: str, value: float, kind: str, attributes: dict) -> None:
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "kind": kind,
                "attributes": attributes,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    def add_counter(
        self,
        name: str,
        value: float = 1,
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        attributes = attributes or {}
        self._buffer(name, value, "counter", attributes)
        if self._initialized:
            if name not in self._counters:
                self._counters[name] = self._meter.create_counter(name)
            self._counters[name].add(value, attributes=attributes)

    def record_histogram(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        attributes = attributes or {}
        self._buffer(name, value, "histogram", attributes)
        if self._initialized:
            if name not in self._histograms:
                self._histograms[name] = self._meter.create_histogram(name, unit=unit)
            self._histograms[name].record(value, attributes=attributes)

    async def on_status_changed(self, event: InstanceStatusChanged) -> None:
        self.add_counter(
            "anywhere.instance.transitions",
            attributes={"region": event.region, "status": event.status},
        )

    async def on_reconciliation_completed(self, event: ReconciliationCompleted) -> None:
        self.record_histogram(
            "anywhere.reconcile.duration", event.duration_ms, unit="ms"
        )
        for kind in ("updated", "created", "adopted", "soft_deleted"):
            count = getattr(event, kind)
            if count:
                self.add_counter(
                    "anywhere.reconcile.changes", count, attributes={"kind": kind}
                )
        for region in event.failed_regions:
            self.add_counter(
                "anywhere.reconcile.region_failures", attributes={"region": region}
            )

    async def export(self) -> None:
        """Flush the local buffer; the SDK reader exports on its own schedule."""
        if not self._initialized:
            return
        exported_count = len(self._metrics_buffer)
        self._metrics_buffer.clear()
        if exported_count:
            logger.debug("Flushed %d buffered metrics", exported_count)


async def create_exporter(
    endpoint: Optional[str] = None,
    insecure: bool = False,
    service_name: str = "anywhere",
) -> OTELExporter:
    """Factory function to create and initialize an OTEL exporter."""
    config = OTELConfig(
        endpoint=endpoint or "",
        service_name=service_name,
        insecure=insecure,
    )
    exporter = OTELExporter(config)
    await exporter.initialize()
    return exporter
