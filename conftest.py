"""Global test configuration.

Shared fixtures wiring the orchestrator against a temporary SQLite
inventory, the in-memory cloud gateway and a scratch V2Ray config file.
"""

import json

import pytest

from anywhere.application.use_cases.provisioning_orchestrator import (
    ProvisioningOrchestrator,
)
from anywhere.infrastructure.adapters.simulated_gateway import SimulatedGateway
from anywhere.infrastructure.adapters.v2ray_publisher import V2RayConfigPublisher
from anywhere.infrastructure.config import (
    AnywhereConfig,
    AWSConfig,
    DatabaseConfig,
    ProxyConfig,
    RegionConfig,
    SchedulerConfig,
)
from anywhere.infrastructure.event_bus import EventBus
from anywhere.infrastructure.repositories.inventory_repository import (
    InventoryRepository,
)

TEST_REGIONS = (
    RegionConfig(code="us-east-1", name="Virginia", template_id="lt-use1"),
    RegionConfig(code="ap-east-1", name="Hong Kong", template_id="lt-ape1"),
    RegionConfig(code="eu-west-1", name="Ireland", template_id="lt-euw1"),
)


@pytest.fixture
def proxy_config_path(tmp_path):
    path = tmp_path / "v2ray.json"
    path.write_text(json.dumps({"inbounds": [], "outbounds": []}))
    return str(path)


@pytest.fixture
def config(tmp_path, proxy_config_path):
    return AnywhereConfig(
        database=DatabaseConfig(path=str(tmp_path / "inventory.db")),
        aws=AWSConfig(regions=TEST_REGIONS),
        proxy=ProxyConfig(
            local_config_path=proxy_config_path,
            port=10086,
            restart_command="",
        ),
        scheduler=SchedulerConfig(
            instance_sync_interval=0.05,
            instance_wait_timeout=1.0,
            poll_interval=0.01,
            shutdown_grace=1.0,
        ),
    )


@pytest.fixture
def store(config):
    repo = InventoryRepository(config.database.path)
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def gateway(config):
    return SimulatedGateway(poll_interval=config.scheduler.poll_interval)


@pytest.fixture
def publisher(config):
    return V2RayConfigPublisher(config.proxy.local_config_path, restart_command="")


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def orchestrator(store, gateway, publisher, config, event_bus):
    return ProvisioningOrchestrator(
        store, gateway, publisher, config, event_bus=event_bus
    )
