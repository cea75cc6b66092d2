"""
Reconciliation Service

Architectural Intent:
- Pure domain service that diffs persisted inventory against observed cloud state
- Produces a ReconciliationPlan; applying it is the reconciler use case's job
- No I/O, so every drift rule is unit-testable in isolation

Domain Logic:
- Cloud instances without an ownership tag are not managed and never matched
- Records are matched by cloud instance id, then adopted by uuid when the
  record has no cloud id yet (crash between launch and persist)
- Unknown tagged instances become new records with their derived status
- Records absent from a successfully observed region are soft-deleted
- error and deleting records keep their status: the reconciler only refreshes
  their address, and never retires an error record on its own
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from anywhere.domain.entities.instance import InstanceRecord, InstanceStatus
from anywhere.domain.value_objects.cloud_instance import CloudInstance

_FROZEN_STATUSES = frozenset({InstanceStatus.ERROR, InstanceStatus.DELETING})


@dataclass
class ReconciliationPlan:
    updates: list[InstanceRecord] = field(default_factory=list)
    adoptions: list[InstanceRecord] = field(default_factory=list)
    creations: list[InstanceRecord] = field(default_factory=list)
    soft_deletes: list[InstanceRecord] = field(default_factory=list)
    orphans: list[CloudInstance] = field(default_factory=list)
    skipped_untagged: int = 0

    @property
    def is_empty(self) -> bool:
        return not (
            self.updates or self.adoptions or self.creations or self.soft_deletes
        )


class ReconciliationPlanner:
    """
    Computes the changes that converge inventory towards cloud reality.
    """

    def plan(
        self,
        records: Iterable[InstanceRecord],
        observed: Mapping[str, list[CloudInstance]],
        retired_uuids: Iterable[str] = (),
    ) -> ReconciliationPlan:
        """
        Parameters
        ----------
        records:
            Non-deleted inventory records.
        observed:
            Live instances per region, only for regions fetched successfully
            this cycle.
        retired_uuids:
            uuids that belong to soft-deleted records.
        """
        plan = ReconciliationPlan()
        retired = set(retired_uuids)
        active = [r for r in records if not r.is_deleted]

        by_cloud_id = {r.cloud_instance_id: r for r in active if r.cloud_instance_id}
        by_uuid = {r.uuid: r for r in active}
        unmatched = dict(by_cloud_id)

        for region, instances in observed.items():
            for instance in instances:
                if not instance.is_managed:
                    plan.skipped_untagged += 1
                    continue

                record = by_cloud_id.get(instance.cloud_id)
                if record is not None:
                    unmatched.pop(instance.cloud_id, None)
                    self._plan_observation(plan, record, instance)
                    continue

                owner = by_uuid.get(instance.ownership_tag)
                if owner is not None:
                    if owner.cloud_instance_id or owner.region != region:
                        plan.orphans.append(instance)
                    else:
                        self._plan_adoption(plan, owner, instance)
                    continue

                if instance.ownership_tag in retired:
                    plan.orphans.append(instance)
                    continue

                if instance.status is InstanceStatus.DELETED:
                    continue

                plan.creations.append(
                    InstanceRecord(
                        uuid=instance.ownership_tag,
                        region=region,
                        status=instance.status,
                        cloud_instance_id=instance.cloud_id,
                        public_address=instance.public_address,
                    )
                )

        for record in unmatched.values():
            if record.region not in observed:
                continue
            if record.status is InstanceStatus.ERROR:
                continue
            plan.soft_deletes.append(record)

        return plan

    def _next_status(
        self, record: InstanceRecord, instance: CloudInstance
    ) -> InstanceStatus:
        derived = instance.status
        if record.status in _FROZEN_STATUSES:
            return record.status
        if derived is record.status or not record.status.can_transition_to(derived):
            return record.status
        return derived

    def _plan_observation(
        self,
        plan: ReconciliationPlan,
        record: InstanceRecord,
        instance: CloudInstance,
    ) -> None:
        status = self._next_status(record, instance)
        if status is InstanceStatus.DELETED:
            plan.soft_deletes.append(record)
            return
        if status is record.status and instance.public_address == record.public_address:
            return
        plan.updates.append(record.with_observation(instance.public_address, status))

    def _plan_adoption(
        self,
        plan: ReconciliationPlan,
        record: InstanceRecord,
        instance: CloudInstance,
    ) -> None:
        linked = record.with_cloud_instance(instance.cloud_id)
        status = self._next_status(linked, instance)
        if status is InstanceStatus.DELETED:
            status = linked.status
        plan.adoptions.append(linked.with_observation(instance.public_address, status))
