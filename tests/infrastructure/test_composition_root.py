"""Tests for the composition root wiring."""

import dataclasses

import pytest
from anywhere.application.use_cases.cloud_reconciler import CloudReconciler
from anywhere.composition_root import create_container
from anywhere.domain.events.instance_events import (
    InstanceStatusChanged,
    ReconciliationCompleted,
)
from anywhere.infrastructure.adapters.ec2_gateway import Ec2Gateway
from anywhere.infrastructure.adapters.simulated_gateway import SimulatedGateway


@pytest.fixture
def container(config):
    c = create_container(dataclasses.replace(config, simulate=True))
    yield c
    c.close()


class TestCreateContainer:
    def test_simulated_wiring(self, container, config):
        assert isinstance(container.gateway, SimulatedGateway)
        assert container.gateway.poll_interval == config.scheduler.poll_interval
        assert container.orchestrator.store is container.store
        assert container.orchestrator.gateway is container.gateway
        assert container.orchestrator.publisher is container.publisher
        assert container.orchestrator.config.region_codes == (
            "us-east-1", "ap-east-1", "eu-west-1",
        )

    def test_reconciler_scheduled(self, container, config):
        reconciler = container.scheduler.get_task("cloud_instance_sync")
        assert isinstance(reconciler, CloudReconciler)
        assert reconciler is container.reconciler
        assert reconciler.regions == config.region_codes
        assert reconciler.interval_seconds == config.scheduler.instance_sync_interval

    def test_telemetry_attached(self, container):
        assert container.event_bus.handler_count(InstanceStatusChanged) == 1
        assert container.event_bus.handler_count(ReconciliationCompleted) == 1
        assert container.telemetry.enabled is False

    def test_ec2_gateway_by_default(self, config):
        c = create_container(config)
        try:
            assert isinstance(c.gateway, Ec2Gateway)
        finally:
            c.close()

    @pytest.mark.asyncio
    async def test_container_runs_a_lifecycle(self, container):
        uuid = await container.orchestrator.request_create("us-east-1")
        await container.orchestrator.drain()
        assert container.orchestrator.get_instance(uuid).status == "running"
        assert container.telemetry._metrics_buffer
