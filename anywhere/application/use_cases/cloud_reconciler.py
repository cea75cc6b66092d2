"""
Cloud Reconciler Use Case

Architectural Intent:
- Scheduled task converging the persisted inventory to observed cloud reality
- Runs one pass immediately, then every `instance_sync_interval` seconds
- Heals drift from any source: console changes, crashed workflows, and
  instances that terminated themselves

Design Decisions:
- The diff itself is the pure ReconciliationPlanner; this class does the I/O
- A region whose describe call fails is skipped for the cycle and retried on
  the next tick; its records are not considered vanished
- A crashed cycle is logged and never ends the loop
- New records are inserted under the store's admission lock with their
  derived status; one that gives a region a second active record is logged
"""

import asyncio
import logging
import time
from typing import Optional

from anywhere.domain.entities.instance import InstanceRecord, InstanceStatus
from anywhere.domain.errors import AnywhereError
from anywhere.domain.events.instance_events import (
    InstanceStatusChanged,
    ReconciliationCompleted,
)
from anywhere.domain.ports.cloud_gateway_port import CloudGatewayPort
from anywhere.domain.ports.event_bus_port import EventBusPort
from anywhere.domain.ports.inventory_port import InventoryPort
from anywhere.domain.services.reconciliation import (
    ReconciliationPlan,
    ReconciliationPlanner,
)
from anywhere.domain.value_objects.cloud_instance import CloudInstance

logger = logging.getLogger(__name__)


class CloudReconciler:
    name = "cloud_instance_sync"

    def __init__(
        self,
        store: InventoryPort,
        gateway: CloudGatewayPort,
        regions: tuple[str, ...],
        interval_seconds: float = 60,
        event_bus: Optional[EventBusPort] = None,
        planner: Optional[ReconciliationPlanner] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.regions = regions
        self.interval_seconds = interval_seconds
        self.event_bus = event_bus
        self.planner = planner or ReconciliationPlanner()
        self._stop_requested = asyncio.Event()
        self._stopped = False
        self.cycles = 0

    async def start(self, stop_event: asyncio.Event) -> None:
        logger.info(
            "Cloud sync running every %ss over %s",
            self.interval_seconds, ", ".join(self.regions) or "no regions",
        )
        while True:
            try:
                await self.sync_once()
            except AnywhereError as e:
                logger.error("Cloud sync cycle failed: %s", e)
            except Exception:
                logger.exception("Cloud sync cycle crashed; retrying next tick")

            if await self._wait_for_stop(stop_event):
                logger.info("Cloud sync stopping")
                return

    async def _wait_for_stop(self, stop_event: asyncio.Event) -> bool:
        """Sleep one interval. True if either stop signal fired meanwhile."""
        waiters = [
            asyncio.create_task(stop_event.wait()),
            asyncio.create_task(self._stop_requested.wait()),
        ]
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.interval_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        return bool(done)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop_requested.set()

    async def sync_once(self) -> ReconciliationCompleted:
        started = time.monotonic()
        records = self.store.list_active()

        observed: dict[str, list[CloudInstance]] = {}
        failed: list[str] = []
        for region in self.regions:
            try:
                observed[region] = await self.gateway.describe_all(region)
            except AnywhereError as e:
                logger.error("Skipping region %s this cycle: %s", region, e)
                failed.append(region)

        retired = self._retired_uuids(records, observed)
        plan = self.planner.plan(records, observed, retired)
        changes = await self._apply(plan, records)

        self.cycles += 1
        summary = ReconciliationCompleted(
            updated=len(plan.updates),
            created=changes,
            adopted=len(plan.adoptions),
            soft_deleted=len(plan.soft_deletes),
            skipped_untagged=plan.skipped_untagged,
            failed_regions=tuple(failed),
            duration_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(
            "Cloud sync: %d updated, %d created, %d adopted, %d soft-deleted, "
            "%d untagged skipped, %d regions failed",
            summary.updated, summary.created, summary.adopted,
            summary.soft_deleted, summary.skipped_untagged, len(failed),
        )
        if self.event_bus is not None:
            await self.event_bus.publish([summary])
        return summary

    def _retired_uuids(
        self,
        records: list[InstanceRecord],
        observed: dict[str, list[CloudInstance]],
    ) -> set[str]:
        known = {r.uuid for r in records}
        retired = set()
        for instances in observed.values():
            for instance in instances:
                tag = instance.ownership_tag
                if not tag or tag in known or tag in retired:
                    continue
                if self.store.get_by_uuid(tag, include_deleted=True) is not None:
                    retired.add(tag)
        return retired

    async def _apply(
        self, plan: ReconciliationPlan, records: list[InstanceRecord]
    ) -> int:
        events: list[InstanceStatusChanged] = []
        seen = {r.uuid: r.status for r in records}

        # A workflow may have moved the record while regions were described.
        for record in plan.updates + plan.adoptions:
            if self.store.update(record, expected=seen.get(record.uuid)):
                events.append(self._event(record, "observed in cloud"))

        created = 0
        for record in plan.creations:
            with self.store.locked():
                if record.status.is_active and self.store.has_active_in_region(
                    record.region
                ):
                    logger.warning(
                        "Out-of-band instance %s (%s) gives %s a second active record",
                        record.cloud_instance_id, record.uuid, record.region,
                    )
                self.store.create(record)
            created += 1
            events.append(self._event(record, "discovered in cloud"))

        for record in plan.soft_deletes:
            if self.store.soft_delete(record.uuid):
                events.append(
                    InstanceStatusChanged(
                        aggregate_id=record.uuid,
                        region=record.region,
                        status=InstanceStatus.DELETED.value,
                        reason="vanished from cloud",
                    )
                )

        for orphan in plan.orphans:
            logger.warning(
                "Instance %s in %s is tagged %s but has no matching record",
                orphan.cloud_id, orphan.region, orphan.ownership_tag,
            )

        if events and self.event_bus is not None:
            await self.event_bus.publish(events)
        return created

    @staticmethod
    def _event(record: InstanceRecord, reason: str) -> InstanceStatusChanged:
        return InstanceStatusChanged(
            aggregate_id=record.uuid,
            region=record.region,
            status=record.status.value,
            reason=reason,
        )
