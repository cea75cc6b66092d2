"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the orchestrator
- Single place where all adapters and use cases are wired together
- No adapter instantiation should occur outside this module (except tests)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- The immutable AnywhereConfig is injected into every component that needs it
- `simulate` swaps the EC2 gateway for the in-memory one; nothing else changes
- Telemetry is created here but initialized by the caller (it is async)
"""

from dataclasses import dataclass
from typing import Optional, Union

from anywhere.application.orchestration.task_scheduler import TaskScheduler
from anywhere.application.use_cases.cloud_reconciler import CloudReconciler
from anywhere.application.use_cases.provisioning_orchestrator import (
    ProvisioningOrchestrator,
)
from anywhere.infrastructure.adapters.ec2_gateway import Ec2Gateway
from anywhere.infrastructure.adapters.simulated_gateway import SimulatedGateway
from anywhere.infrastructure.adapters.v2ray_publisher import V2RayConfigPublisher
from anywhere.infrastructure.config import AnywhereConfig, load_config
from anywhere.infrastructure.event_bus import EventBus
from anywhere.infrastructure.repositories.inventory_repository import (
    InventoryRepository,
)
from anywhere.infrastructure.telemetry.otel_exporter import OTELConfig, OTELExporter


@dataclass
class AnywhereContainer:
    """DI container holding all wired dependencies."""

    config: AnywhereConfig
    store: InventoryRepository
    gateway: Union[Ec2Gateway, SimulatedGateway]
    publisher: V2RayConfigPublisher
    event_bus: EventBus
    telemetry: OTELExporter
    orchestrator: ProvisioningOrchestrator
    reconciler: CloudReconciler
    scheduler: TaskScheduler

    def close(self) -> None:
        self.store.close()


def create_container(config: Optional[AnywhereConfig] = None) -> AnywhereContainer:
    """Create and wire all dependencies."""
    config = config or load_config()
    poll_interval = config.scheduler.poll_interval

    store = InventoryRepository(config.database.path)
    store.connect()

    if config.simulate:
        gateway: Union[Ec2Gateway, SimulatedGateway] = SimulatedGateway(
            poll_interval=poll_interval
        )
    else:
        gateway = Ec2Gateway(config.aws, poll_interval=poll_interval)

    publisher = V2RayConfigPublisher(
        config.proxy.local_config_path,
        restart_command=config.proxy.restart_command,
    )
    event_bus = EventBus()
    telemetry = OTELExporter(
        OTELConfig(
            endpoint=config.telemetry.endpoint,
            insecure=config.telemetry.insecure,
        )
    )
    telemetry.attach(event_bus)

    orchestrator = ProvisioningOrchestrator(
        store, gateway, publisher, config, event_bus=event_bus
    )
    reconciler = CloudReconciler(
        store,
        gateway,
        config.region_codes,
        interval_seconds=config.scheduler.instance_sync_interval,
        event_bus=event_bus,
    )
    scheduler = TaskScheduler()
    scheduler.register(reconciler)

    return AnywhereContainer(
        config=config,
        store=store,
        gateway=gateway,
        publisher=publisher,
        event_bus=event_bus,
        telemetry=telemetry,
        orchestrator=orchestrator,
        reconciler=reconciler,
        scheduler=scheduler,
    )
