"""Tests for the ProvisioningOrchestrator use case."""

import asyncio
import dataclasses
import json

import pytest
from anywhere.application.use_cases.provisioning_orchestrator import (
    STEP_HISTORY,
    ProvisioningOrchestrator,
)
from anywhere.domain.entities.instance import InstanceRecord, InstanceStatus
from anywhere.domain.errors import (
    ConcurrencyViolationError,
    InstanceNotFoundError,
    InvalidRegionError,
)
from anywhere.domain.events.instance_events import InstanceStatusChanged
from anywhere.domain.value_objects.vmess_link import parse_vmess_link
from anywhere.infrastructure.adapters.v2ray_publisher import V2RayConfigPublisher


def _with_scheduler(config, **changes):
    return dataclasses.replace(
        config, scheduler=dataclasses.replace(config.scheduler, **changes)
    )


def _outbound_tags(path):
    with open(path) as f:
        return [o["tag"] for o in json.load(f).get("outbounds", [])]


@pytest.fixture
def statuses(event_bus):
    seen = []

    async def record(event):
        seen.append((event.instance_uuid, event.status))

    event_bus.subscribe(InstanceStatusChanged, record)
    return seen


class TestRequestCreate:
    @pytest.mark.asyncio
    async def test_create_runs_to_running(self, orchestrator, store, gateway,
                                          proxy_config_path, statuses):
        uuid = await orchestrator.request_create("ap-east-1")
        assert store.get_by_uuid(uuid).status is InstanceStatus.PENDING

        await orchestrator.drain()

        record = store.get_by_uuid(uuid)
        assert record.status is InstanceStatus.RUNNING
        assert record.cloud_instance_id
        assert record.public_address.startswith("203.0.113.")
        assert [s for u, s in statuses if u == uuid] == ["pending", "creating", "running"]
        assert _outbound_tags(proxy_config_path) == ["out_aws_ap_east_1"]
        assert uuid in gateway.user_data_for(record.cloud_instance_id)
        assert orchestrator.step_outcomes[-1].ok

    @pytest.mark.asyncio
    async def test_create_is_idempotent_per_region(self, orchestrator, gateway, store):
        first = await orchestrator.request_create("us-east-1")
        second = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        third = await orchestrator.request_create("us-east-1")

        assert first == second == third
        assert gateway.call_counts["create"] == 1
        assert len(store.list_active()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_admit_one(self, orchestrator, store, gateway):
        uuids = await asyncio.gather(
            *(orchestrator.request_create("eu-west-1") for _ in range(10))
        )
        await orchestrator.drain()
        assert len(set(uuids)) == 1
        assert store.count_active_in_region("eu-west-1") == 1
        assert gateway.call_counts["create"] == 1

    @pytest.mark.asyncio
    async def test_regions_are_independent(self, orchestrator, store):
        a = await orchestrator.request_create("us-east-1")
        b = await orchestrator.request_create("ap-east-1")
        await orchestrator.drain()
        assert a != b
        assert len(store.list_active()) == 2

    @pytest.mark.asyncio
    async def test_unknown_region_rejected(self, orchestrator, store):
        with pytest.raises(InvalidRegionError):
            await orchestrator.request_create("sa-east-1")
        assert store.list_active() == []

    @pytest.mark.asyncio
    async def test_duplicate_after_admission_rolls_back(self, orchestrator, store,
                                                        monkeypatch):
        store.create(InstanceRecord(uuid="existing", region="us-east-1"))
        monkeypatch.setattr(store, "get_active_in_region", lambda region: None)

        with pytest.raises(ConcurrencyViolationError) as exc:
            await orchestrator.request_create("us-east-1")

        assert exc.value.region == "us-east-1"
        assert [r.uuid for r in store.list_active()] == ["existing"]
        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_launch_failure_marks_error(self, orchestrator, store, gateway):
        gateway.fail_next("create")
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        record = store.get_by_uuid(uuid)
        assert record.status is InstanceStatus.ERROR
        assert record.cloud_instance_id == ""
        assert gateway.call_counts["create"] == 1

    @pytest.mark.asyncio
    async def test_boot_timeout_marks_error_without_retry(self, store, gateway,
                                                          publisher, config):
        gateway.boot_polls = None
        config = _with_scheduler(config, instance_wait_timeout=0.05)
        orchestrator = ProvisioningOrchestrator(store, gateway, publisher, config)

        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        record = store.get_by_uuid(uuid)
        assert record.status is InstanceStatus.ERROR
        assert record.cloud_instance_id
        assert gateway.call_counts["create"] == 1

    @pytest.mark.asyncio
    async def test_error_frees_the_region(self, orchestrator, store, gateway):
        gateway.fail_next("create")
        failed = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        retry = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        assert retry != failed
        assert store.get_by_uuid(retry).status is InstanceStatus.RUNNING

    @pytest.mark.asyncio
    async def test_publish_failure_is_not_fatal(self, store, gateway, config, tmp_path):
        publisher = V2RayConfigPublisher(str(tmp_path / "missing.json"), restart_command="")
        orchestrator = ProvisioningOrchestrator(store, gateway, publisher, config)

        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        assert store.get_by_uuid(uuid).status is InstanceStatus.RUNNING
        outcome = orchestrator.step_outcomes[-1]
        assert outcome.step == "publish"
        assert not outcome.ok
        assert "not found" in outcome.error


class TestRequestDelete:
    @pytest.mark.asyncio
    async def test_delete_running_instance(self, orchestrator, store, gateway,
                                           proxy_config_path, statuses):
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        cloud_id = store.get_by_uuid(uuid).cloud_instance_id

        await orchestrator.request_delete(uuid)
        assert store.get_by_uuid(uuid).status is InstanceStatus.DELETING
        await orchestrator.drain()

        assert store.get_by_uuid(uuid) is None
        retired = store.get_by_uuid(uuid, include_deleted=True)
        assert retired.is_deleted and retired.status is InstanceStatus.DELETED
        assert gateway.call_counts["terminate"] == 1
        assert [i.cloud_id for i in gateway.instances()] == [cloud_id]
        assert gateway.instances()[0].state == "terminated"
        assert _outbound_tags(proxy_config_path) == []
        assert [s for u, s in statuses if u == uuid][-2:] == ["deleting", "deleted"]

    @pytest.mark.asyncio
    async def test_delete_unknown(self, orchestrator):
        with pytest.raises(InstanceNotFoundError):
            await orchestrator.request_delete("missing")

    @pytest.mark.asyncio
    async def test_delete_already_deleted(self, orchestrator, store):
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        await orchestrator.request_delete(uuid)
        await orchestrator.drain()
        with pytest.raises(InstanceNotFoundError):
            await orchestrator.request_delete(uuid)

    @pytest.mark.asyncio
    async def test_delete_is_idempotent_in_flight(self, orchestrator, store, gateway):
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        await orchestrator.request_delete(uuid)
        await orchestrator.request_delete(uuid)
        await orchestrator.drain()

        assert gateway.call_counts["terminate"] == 1
        assert store.get_by_uuid(uuid) is None

    @pytest.mark.asyncio
    async def test_delete_error_record_without_cloud_instance(self, orchestrator,
                                                              store, gateway):
        gateway.fail_next("create")
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()

        await orchestrator.request_delete(uuid)
        await orchestrator.drain()

        assert store.get_by_uuid(uuid) is None
        assert gateway.call_counts["terminate"] == 0

    @pytest.mark.asyncio
    async def test_delete_wins_over_creation(self, orchestrator, store, gateway,
                                             proxy_config_path):
        gateway.boot_polls = None
        uuid = await orchestrator.request_create("us-east-1")
        for _ in range(50):
            await asyncio.sleep(0.01)
            if store.get_by_uuid(uuid).cloud_instance_id:
                break
        cloud_id = store.get_by_uuid(uuid).cloud_instance_id
        assert cloud_id

        await orchestrator.request_delete(uuid)
        gateway.set_state(cloud_id, "running")
        await orchestrator.drain()

        assert store.get_by_uuid(uuid) is None
        assert gateway.instances()[0].state == "terminated"
        assert _outbound_tags(proxy_config_path) == []

    @pytest.mark.asyncio
    async def test_terminate_failure_marks_error(self, orchestrator, store, gateway):
        uuid = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        gateway.fail_next("terminate")

        await orchestrator.request_delete(uuid)
        await orchestrator.drain()

        assert store.get_by_uuid(uuid).status is InstanceStatus.ERROR

    @pytest.mark.asyncio
    async def test_retrying_failed_delete_keeps_newer_endpoint(
        self, orchestrator, store, gateway, proxy_config_path
    ):
        old = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        gateway.fail_next("terminate")
        await orchestrator.request_delete(old)
        await orchestrator.drain()
        assert store.get_by_uuid(old).status is InstanceStatus.ERROR

        new = await orchestrator.request_create("us-east-1")
        await orchestrator.drain()
        assert store.get_by_uuid(new).status is InstanceStatus.RUNNING

        await orchestrator.request_delete(old)
        await orchestrator.drain()

        assert store.get_by_uuid(old) is None
        assert store.get_by_uuid(new).status is InstanceStatus.RUNNING
        with open(proxy_config_path) as f:
            [outbound] = json.load(f)["outbounds"]
        assert outbound["tag"] == "out_aws_us_east_1"
        assert outbound["settings"]["vnext"][0]["users"][0]["id"] == new

    @pytest.mark.asyncio
    async def test_delete_does_not_wait_out_the_boot(self, store, gateway,
                                                     publisher, config,
                                                     proxy_config_path):
        gateway.boot_polls = None
        config = _with_scheduler(config, instance_wait_timeout=30.0)
        orchestrator = ProvisioningOrchestrator(store, gateway, publisher, config)
        uuid = await orchestrator.request_create("us-east-1")
        for _ in range(50):
            await asyncio.sleep(0.01)
            if store.get_by_uuid(uuid).cloud_instance_id:
                break

        await orchestrator.request_delete(uuid)
        await asyncio.wait_for(orchestrator.drain(), timeout=5)

        assert store.get_by_uuid(uuid) is None
        assert gateway.call_counts["create"] == 1
        assert gateway.instances()[0].state == "terminated"
        assert _outbound_tags(proxy_config_path) == []


class TestLifecycleControl:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_and_marks_error(self, orchestrator, store, gateway):
        gateway.boot_polls = None
        uuid = await orchestrator.request_create("us-east-1")
        await asyncio.sleep(0.05)

        await orchestrator.shutdown(grace=0.05)

        assert orchestrator.in_flight == 0
        assert store.get_by_uuid(uuid).status is InstanceStatus.ERROR

    @pytest.mark.asyncio
    async def test_shutdown_without_workflows(self, orchestrator):
        await orchestrator.shutdown(grace=0.01)

    @pytest.mark.asyncio
    async def test_step_history_is_bounded(self, orchestrator):
        for _ in range(STEP_HISTORY + 5):
            await orchestrator._publish_endpoint("us-east-1", "u1", "203.0.113.9")

        assert len(orchestrator.step_outcomes) == STEP_HISTORY
        assert orchestrator.step_outcomes[-1].ok

    @pytest.mark.asyncio
    async def test_recover_interrupted(self, orchestrator, store, gateway):
        store.create(InstanceRecord(uuid="stuck", region="us-east-1",
                                    status=InstanceStatus.CREATING))
        cloud_id = gateway.inject_instance("ap-east-1", ownership_tag="leaving")
        store.create(InstanceRecord(uuid="leaving", region="ap-east-1",
                                    status=InstanceStatus.DELETING,
                                    cloud_instance_id=cloud_id))
        store.create(InstanceRecord(uuid="fine", region="eu-west-1",
                                    status=InstanceStatus.RUNNING,
                                    cloud_instance_id="i-fine"))

        recovered = await orchestrator.recover_interrupted()
        await orchestrator.drain()

        assert recovered == 2
        assert store.get_by_uuid("stuck").status is InstanceStatus.ERROR
        assert store.get_by_uuid("leaving") is None
        assert store.get_by_uuid("fine").status is InstanceStatus.RUNNING


class TestReadSide:
    @pytest.mark.asyncio
    async def test_running_view_has_direct_link(self, orchestrator):
        uuid = await orchestrator.request_create("ap-east-1")
        await orchestrator.drain()

        view = orchestrator.get_instance(uuid)
        share = parse_vmess_link(view.direct_link)
        assert share["add"] == view.public_address
        assert share["id"] == uuid
        assert share["port"] == "10086"
        assert share["ps"] == "Hong Kong direct"
        assert view.region_name == "Hong Kong"
        assert view.relay_link == ""

    @pytest.mark.asyncio
    async def test_pending_view_has_no_links(self, orchestrator):
        uuid = await orchestrator.request_create("ap-east-1")
        view = orchestrator.get_instance(uuid)
        assert view.status == "pending"
        assert view.direct_link == ""
        await orchestrator.drain()

    @pytest.mark.asyncio
    async def test_relay_link(self, store, gateway, publisher, config, proxy_config_path):
        with open(proxy_config_path, "w") as f:
            json.dump({"inbounds": [{
                "protocol": "vmess",
                "port": 20086,
                "settings": {"clients": [
                    {"id": "relay-id", "email": "user_aws_ap-east-1"},
                ]},
            }], "outbounds": []}, f)
        config = dataclasses.replace(
            config, proxy=dataclasses.replace(config.proxy, relay_host="relay.example.com")
        )
        orchestrator = ProvisioningOrchestrator(store, gateway, publisher, config)

        uuid = await orchestrator.request_create("ap-east-1")
        await orchestrator.drain()

        share = parse_vmess_link(orchestrator.get_instance(uuid).relay_link)
        assert share["add"] == "relay.example.com"
        assert share["id"] == "relay-id"
        assert share["port"] == "20086"

    def test_get_unknown_instance(self, orchestrator):
        with pytest.raises(InstanceNotFoundError):
            orchestrator.get_instance("missing")

    def test_list_regions(self, orchestrator):
        regions = [r.to_dict() for r in orchestrator.list_regions()]
        assert regions == [
            {"region": "us-east-1", "name": "Virginia"},
            {"region": "ap-east-1", "name": "Hong Kong"},
            {"region": "eu-west-1", "name": "Ireland"},
        ]

    @pytest.mark.asyncio
    async def test_list_instances(self, orchestrator):
        await orchestrator.request_create("us-east-1")
        await orchestrator.request_create("ap-east-1")
        await orchestrator.drain()
        assert {v.region for v in orchestrator.list_instances()} == {
            "us-east-1", "ap-east-1",
        }
