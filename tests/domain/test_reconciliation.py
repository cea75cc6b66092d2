"""Tests for the ReconciliationPlanner drift rules."""

from anywhere.domain.entities.instance import InstanceRecord, InstanceStatus
from anywhere.domain.services.reconciliation import ReconciliationPlanner
from anywhere.domain.value_objects.cloud_instance import CloudInstance


def _record(uuid, region="us-east-1", status=InstanceStatus.RUNNING,
            cloud_id="", address=""):
    if status is InstanceStatus.RUNNING and not cloud_id:
        cloud_id = f"i-{uuid}"
    return InstanceRecord(
        uuid=uuid,
        region=region,
        status=status,
        cloud_instance_id=cloud_id,
        public_address=address,
    )


def _cloud(cloud_id, region="us-east-1", state="running", tag="", address=""):
    return CloudInstance(
        cloud_id=cloud_id,
        region=region,
        state=state,
        public_address=address,
        ownership_tag=tag,
    )


class TestReconciliationPlanner:
    def setup_method(self):
        self.planner = ReconciliationPlanner()

    def test_no_drift_is_empty(self):
        record = _record("u1", cloud_id="i-1", address="203.0.113.1")
        plan = self.planner.plan(
            [record],
            {"us-east-1": [_cloud("i-1", tag="u1", address="203.0.113.1")]},
        )
        assert plan.is_empty

    def test_untagged_instances_are_skipped(self):
        plan = self.planner.plan(
            [], {"us-east-1": [_cloud("i-9"), _cloud("i-10")]}
        )
        assert plan.skipped_untagged == 2
        assert plan.is_empty

    def test_address_change_is_an_update(self):
        record = _record("u1", cloud_id="i-1", address="203.0.113.1")
        plan = self.planner.plan(
            [record],
            {"us-east-1": [_cloud("i-1", tag="u1", address="203.0.113.2")]},
        )
        assert len(plan.updates) == 1
        assert plan.updates[0].public_address == "203.0.113.2"
        assert plan.updates[0].status is InstanceStatus.RUNNING

    def test_creating_record_follows_running_instance(self):
        record = _record("u1", status=InstanceStatus.CREATING, cloud_id="i-1")
        plan = self.planner.plan(
            [record],
            {"us-east-1": [_cloud("i-1", tag="u1", address="203.0.113.5")]},
        )
        assert plan.updates[0].status is InstanceStatus.RUNNING
        assert plan.updates[0].public_address == "203.0.113.5"

    def test_running_record_does_not_regress_to_creating(self):
        record = _record("u1", cloud_id="i-1", address="203.0.113.5")
        plan = self.planner.plan(
            [record],
            {"us-east-1": [_cloud("i-1", state="pending", tag="u1",
                                  address="203.0.113.5")]},
        )
        assert plan.is_empty

    def test_error_and_deleting_keep_status(self):
        error = _record("u1", status=InstanceStatus.ERROR, cloud_id="i-1")
        deleting = _record("u2", status=InstanceStatus.DELETING, cloud_id="i-2")
        plan = self.planner.plan(
            [error, deleting],
            {"us-east-1": [
                _cloud("i-1", tag="u1", address="203.0.113.1"),
                _cloud("i-2", tag="u2", address="203.0.113.2"),
            ]},
        )
        statuses = {r.uuid: r.status for r in plan.updates}
        assert statuses == {
            "u1": InstanceStatus.ERROR,
            "u2": InstanceStatus.DELETING,
        }

    def test_terminated_match_is_soft_deleted(self):
        record = _record("u1", cloud_id="i-1")
        plan = self.planner.plan(
            [record], {"us-east-1": [_cloud("i-1", state="terminated", tag="u1")]}
        )
        assert plan.soft_deletes == [record]

    def test_unknown_tagged_instance_is_created(self):
        plan = self.planner.plan(
            [],
            {"ap-east-1": [_cloud("i-7", region="ap-east-1", tag="u7",
                                  address="203.0.113.7")]},
        )
        assert len(plan.creations) == 1
        created = plan.creations[0]
        assert created.uuid == "u7"
        assert created.region == "ap-east-1"
        assert created.status is InstanceStatus.RUNNING
        assert created.cloud_instance_id == "i-7"
        assert created.public_address == "203.0.113.7"

    def test_unknown_terminated_instance_is_ignored(self):
        plan = self.planner.plan(
            [], {"us-east-1": [_cloud("i-7", state="stopped", tag="u7")]}
        )
        assert plan.is_empty

    def test_missing_instance_soft_deletes_record(self):
        record = _record("u1", cloud_id="i-1")
        plan = self.planner.plan([record], {"us-east-1": []})
        assert plan.soft_deletes == [record]

    def test_failed_region_records_are_left_alone(self):
        record = _record("u1", region="eu-west-1", cloud_id="i-1")
        plan = self.planner.plan([record], {"us-east-1": []})
        assert plan.is_empty

    def test_missing_error_record_is_kept(self):
        record = _record("u1", status=InstanceStatus.ERROR, cloud_id="i-1")
        plan = self.planner.plan([record], {"us-east-1": []})
        assert plan.soft_deletes == []

    def test_record_without_cloud_id_is_not_soft_deleted(self):
        record = _record("u1", status=InstanceStatus.PENDING)
        plan = self.planner.plan([record], {"us-east-1": []})
        assert plan.is_empty

    def test_adopts_record_by_uuid(self):
        record = _record("u1", status=InstanceStatus.CREATING)
        plan = self.planner.plan(
            [record],
            {"us-east-1": [_cloud("i-1", tag="u1", address="203.0.113.9")]},
        )
        assert len(plan.adoptions) == 1
        adopted = plan.adoptions[0]
        assert adopted.cloud_instance_id == "i-1"
        assert adopted.status is InstanceStatus.RUNNING
        assert adopted.public_address == "203.0.113.9"
        assert plan.creations == []

    def test_uuid_bound_elsewhere_is_an_orphan(self):
        record = _record("u1", cloud_id="i-1")
        stray = _cloud("i-2", tag="u1")
        plan = self.planner.plan(
            [record], {"us-east-1": [_cloud("i-1", tag="u1"), stray]}
        )
        assert plan.orphans == [stray]
        assert plan.creations == []

    def test_retired_uuid_is_an_orphan(self):
        stray = _cloud("i-2", tag="u-old")
        plan = self.planner.plan([], {"us-east-1": [stray]}, retired_uuids=["u-old"])
        assert plan.orphans == [stray]
        assert plan.creations == []

    def test_converges_mixed_inventory(self):
        records = [
            _record("u1", region="us-east-1", cloud_id="i-1", address="203.0.113.1"),
            _record("u2", region="us-east-1", cloud_id="i-2", address="203.0.113.2"),
        ]
        observed = {
            "us-east-1": [
                _cloud("i-1", tag="u1", address="203.0.113.10"),
                _cloud("i-3", tag="u3", address="203.0.113.3"),
                _cloud("i-4"),
            ]
        }
        plan = self.planner.plan(records, observed)
        assert [r.uuid for r in plan.updates] == ["u1"]
        assert [r.uuid for r in plan.soft_deletes] == ["u2"]
        assert [r.uuid for r in plan.creations] == ["u3"]
        assert plan.skipped_untagged == 1
