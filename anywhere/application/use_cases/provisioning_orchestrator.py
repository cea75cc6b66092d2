"""
Provisioning Orchestrator Use Case

Architectural Intent:
- Exposes create/delete for regional proxy endpoints plus the read side
- Enforces one active instance per region with the store's admission lock
- Drives each instance's state machine in a detached, tracked asyncio task
- Only the admission and the initial delete transition are synchronous;
  everything after is observable through status and logs only

Design Decisions:
- Workflow steps advance the record with compare-and-set transitions, so a
  delete request always wins over an in-flight creation
- Every cloud call is a single attempt; any failure lands the record in error
- Publishing to the local proxy is a non-critical step returning a StepOutcome;
  the last STEP_HISTORY outcomes are kept for inspection
- Teardown cancels an in-flight creation once its cloud id is stored and
  unpublishes only the outbound whose user id is the torn-down uuid
- drain() awaits every workflow; shutdown(grace) cancels the stragglers, and a
  cancelled workflow marks its record as error before exiting
"""

import asyncio
import logging
import time
import uuid as uuid_lib
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from anywhere.application.dtos.instance_dtos import InstanceView, RegionView
from anywhere.domain.entities.instance import (
    ACTIVE_STATUSES,
    InstanceRecord,
    InstanceStatus,
)
from anywhere.domain.errors import (
    AnywhereError,
    ConcurrencyViolationError,
    InstanceNotFoundError,
)
from anywhere.domain.events.instance_events import InstanceStatusChanged
from anywhere.domain.ports.cloud_gateway_port import CloudGatewayPort
from anywhere.domain.ports.event_bus_port import EventBusPort
from anywhere.domain.ports.inventory_port import InventoryPort
from anywhere.domain.ports.proxy_config_port import ProxyConfigPort
from anywhere.domain.services.bootstrap import build_user_data
from anywhere.domain.value_objects.region import outbound_tag_for
from anywhere.domain.value_objects.vmess_link import build_vmess_link
from anywhere.infrastructure.config import AnywhereConfig
from anywhere.infrastructure.logging import bind_instance_id

logger = logging.getLogger(__name__)

STEP_HISTORY = 256

_BUILDING = (InstanceStatus.PENDING, InstanceStatus.CREATING, InstanceStatus.RUNNING)
_DELETABLE = (
    InstanceStatus.PENDING,
    InstanceStatus.CREATING,
    InstanceStatus.RUNNING,
    InstanceStatus.DELETING,
    InstanceStatus.ERROR,
)


@dataclass(frozen=True)
class StepOutcome:
    """Result of a non-critical workflow step. Never raised, only inspected."""
    step: str
    ok: bool
    error: str = ""

    @classmethod
    def success(cls, step: str) -> "StepOutcome":
        return cls(step=step, ok=True)

    @classmethod
    def failure(cls, step: str, error: str) -> "StepOutcome":
        return cls(step=step, ok=False, error=error)


class ProvisioningOrchestrator:
    def __init__(
        self,
        store: InventoryPort,
        gateway: CloudGatewayPort,
        publisher: ProxyConfigPort,
        config: AnywhereConfig,
        event_bus: Optional[EventBusPort] = None,
        user_data_builder: Callable[[str, int], str] = build_user_data,
    ):
        self.store = store
        self.gateway = gateway
        self.publisher = publisher
        self.config = config
        self.event_bus = event_bus
        self._user_data_builder = user_data_builder
        self._workflows: set[asyncio.Task] = set()
        self._creations: dict[str, asyncio.Task] = {}
        self._teardowns: dict[str, asyncio.Task] = {}
        self.step_outcomes: deque[StepOutcome] = deque(maxlen=STEP_HISTORY)

    @property
    def in_flight(self) -> int:
        return len(self._workflows)

    @property
    def wait_timeout(self) -> float:
        return self.config.scheduler.instance_wait_timeout

    # -- Produced interface --------------------------------------------------

    async def request_create(self, region: str) -> str:
        """Admit a create for *region* and return the endpoint's uuid.

        Idempotent: while the region has an active instance, its uuid is
        returned and nothing new is launched.
        """
        self.config.region(region)

        with self.store.locked():
            existing = self.store.get_active_in_region(region)
            if existing is not None:
                logger.info(
                    "Region %s already has active instance %s (%s)",
                    region, existing.uuid, existing.status.value,
                )
                return existing.uuid
            record = self.store.create(
                InstanceRecord(uuid=str(uuid_lib.uuid4()), region=region)
            )

        active = [
            r for r in self.store.list_active()
            if r.region == region and r.status in ACTIVE_STATUSES
        ]
        if len(active) > 1:
            logger.error(
                "Duplicate active instances in %s after admission: %s",
                region, [r.uuid for r in active],
            )
            self.store.soft_delete(record.uuid)
            raise ConcurrencyViolationError(region, record.uuid)

        logger.info("Admitted instance %s in %s", record.uuid, region)
        self._creations[record.uuid] = self._launch(
            "create", record.uuid, _BUILDING, lambda: self._create_workflow(record)
        )
        return record.uuid

    async def request_delete(self, uuid: str) -> None:
        record = self.store.get_by_uuid(uuid)
        if record is None:
            raise InstanceNotFoundError(uuid)

        inflight = self._teardowns.get(uuid)
        if inflight is not None and not inflight.done():
            logger.info("Teardown of %s already in progress", uuid)
            return

        if not self.store.transition(uuid, _DELETABLE, InstanceStatus.DELETING):
            raise InstanceNotFoundError(uuid)
        logger.info("Instance %s marked deleting", uuid)
        self._teardowns[uuid] = self._launch(
            "delete", uuid, (InstanceStatus.DELETING,),
            lambda: self._teardown_workflow(uuid),
        )

    def list_instances(self) -> list[InstanceView]:
        return [self._view(r) for r in self.store.list_active()]

    def get_instance(self, uuid: str) -> InstanceView:
        record = self.store.get_by_uuid(uuid)
        if record is None:
            raise InstanceNotFoundError(uuid)
        return self._view(record)

    def list_regions(self) -> list[RegionView]:
        return [
            RegionView(region=r.code, name=r.name or r.code)
            for r in self.config.aws.regions
        ]

    async def drain(self) -> None:
        """Block until every launched workflow has returned."""
        while self._workflows:
            await asyncio.gather(*list(self._workflows), return_exceptions=True)

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Drain for at most *grace* seconds, then cancel what is left."""
        if grace is None:
            grace = self.config.scheduler.shutdown_grace
        pending = list(self._workflows)
        if not pending:
            return
        logger.info("Draining %d workflows (grace %ss)", len(pending), grace)
        _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            logger.warning("Cancelling workflow %s", task.get_name())
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    async def recover_interrupted(self) -> int:
        """Settle records whose workflow died with a previous process.

        Records still pending/creating without a cloud instance can never
        progress, so they move to error. Those with a cloud instance are left
        to the reconciler. Interrupted teardowns are resumed.
        """
        recovered = 0
        for record in self.store.list_active():
            if record.uuid in self._creations or record.uuid in self._teardowns:
                continue
            if record.status is InstanceStatus.DELETING:
                logger.info("Resuming teardown of %s", record.uuid)
                await self.request_delete(record.uuid)
                recovered += 1
                continue
            if (
                record.status in (InstanceStatus.PENDING, InstanceStatus.CREATING)
                and not record.cloud_instance_id
            ):
                if self.store.transition(
                    record.uuid, (record.status,), InstanceStatus.ERROR
                ):
                    logger.warning(
                        "Instance %s was %s when the last process exited; marked error",
                        record.uuid, record.status.value,
                    )
                    recovered += 1
        return recovered

    # -- Workflow plumbing ---------------------------------------------------

    def _launch(
        self,
        kind: str,
        uuid: str,
        failure_statuses: Iterable[InstanceStatus],
        body: Callable[[], Awaitable[None]],
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_workflow(kind, uuid, tuple(failure_statuses), body),
            name=f"{kind}:{uuid}",
        )
        self._workflows.add(task)
        task.add_done_callback(self._workflows.discard)
        return task

    async def _run_workflow(
        self,
        kind: str,
        uuid: str,
        failure_statuses: tuple[InstanceStatus, ...],
        body: Callable[[], Awaitable[None]],
    ) -> None:
        with bind_instance_id(uuid):
            started = time.monotonic()
            try:
                await body()
            except asyncio.CancelledError:
                logger.warning("%s workflow for %s cancelled", kind, uuid)
                self._mark_error(uuid, failure_statuses)
                raise
            except Exception:
                logger.exception("%s workflow for %s aborted", kind, uuid)
                self._mark_error(uuid, failure_statuses)
            finally:
                registry = self._creations if kind == "create" else self._teardowns
                if registry.get(uuid) is asyncio.current_task():
                    del registry[uuid]
                logger.debug(
                    "%s workflow for %s finished in %.1fs",
                    kind, uuid, time.monotonic() - started,
                )

    def _mark_error(
        self, uuid: str, expected: tuple[InstanceStatus, ...]
    ) -> bool:
        try:
            return self.store.transition(uuid, expected, InstanceStatus.ERROR)
        except AnywhereError as e:
            logger.error("Could not mark %s as error: %s", uuid, e)
            return False

    async def _emit(
        self, uuid: str, region: str, status: InstanceStatus, reason: str = ""
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            [
                InstanceStatusChanged(
                    aggregate_id=uuid,
                    region=region,
                    status=status.value,
                    reason=reason,
                )
            ]
        )

    async def _advance(
        self,
        record: InstanceRecord,
        expected: Iterable[InstanceStatus],
        status: InstanceStatus,
        address: Optional[str] = None,
        reason: str = "",
    ) -> bool:
        if not self.store.transition(record.uuid, expected, status, address=address):
            current = self.store.get_by_uuid(record.uuid, include_deleted=True)
            logger.info(
                "Instance %s not moved to %s; now %s",
                record.uuid, status.value,
                current.status.value if current else "missing",
            )
            return False
        await self._emit(record.uuid, record.region, status, reason)
        return True

    async def _fail(
        self,
        record: InstanceRecord,
        expected: Iterable[InstanceStatus],
        reason: str,
    ) -> None:
        logger.error("Instance %s failed: %s", record.uuid, reason)
        await self._advance(record, expected, InstanceStatus.ERROR, reason=reason)

    # -- Creation ------------------------------------------------------------

    async def _create_workflow(self, record: InstanceRecord) -> None:
        uuid, region = record.uuid, record.region
        await self._emit(uuid, region, InstanceStatus.PENDING)

        if not await self._advance(
            record, (InstanceStatus.PENDING,), InstanceStatus.CREATING
        ):
            return

        payload = self._user_data_builder(uuid, self.config.proxy.port)
        try:
            cloud_id = await self.gateway.create(region, payload, uuid)
        except AnywhereError as e:
            await self._fail(record, _BUILDING, f"create failed: {e}")
            return

        if not self.store.set_cloud_instance_id(uuid, cloud_id):
            logger.warning(
                "Instance %s was deleted while %s launched", uuid, cloud_id
            )
            return
        logger.info("Instance %s launched as %s", uuid, cloud_id)

        try:
            await self.gateway.wait_until_running(region, cloud_id, self.wait_timeout)
            address = await self.gateway.get_public_address(region, cloud_id)
        except AnywhereError as e:
            await self._fail(record, _BUILDING, str(e))
            return

        current = self.store.get_by_uuid(uuid)
        if current is None or current.status not in _BUILDING:
            logger.info("Instance %s left creation before publishing", uuid)
            return

        outcome = await self._publish_endpoint(region, uuid, address)
        if not outcome.ok:
            logger.warning("Endpoint %s not published: %s", uuid, outcome.error)

        if await self._advance(
            record,
            (InstanceStatus.CREATING, InstanceStatus.RUNNING),
            InstanceStatus.RUNNING,
            address=address,
        ):
            logger.info("Instance %s running at %s", uuid, address)

    async def _publish_endpoint(
        self, region: str, uuid: str, address: str
    ) -> StepOutcome:
        try:
            # Shielded so a cancelled creation never leaves a half-written config.
            await asyncio.shield(
                self.publisher.publish(
                    outbound_tag_for(region), address, self.config.proxy.port, uuid
                )
            )
            outcome = StepOutcome.success("publish")
        except Exception as e:
            outcome = StepOutcome.failure("publish", str(e))
        self.step_outcomes.append(outcome)
        return outcome

    # -- Teardown ------------------------------------------------------------

    async def _teardown_workflow(self, uuid: str) -> None:
        interrupted = await self._stop_creation(uuid)

        record = self.store.get_by_uuid(uuid)
        if record is None:
            logger.info("Instance %s already deleted", uuid)
            return
        await self._emit(uuid, record.region, InstanceStatus.DELETING)

        if record.public_address or interrupted:
            outcome = await self._remove_endpoint(record.region, uuid)
            if not outcome.ok:
                logger.warning("Endpoint %s not unpublished: %s", uuid, outcome.error)

        cloud_id = record.cloud_instance_id
        if cloud_id:
            try:
                await self.gateway.terminate(record.region, cloud_id)
            except AnywhereError as e:
                await self._fail(record, (InstanceStatus.DELETING,), f"terminate failed: {e}")
                return
            try:
                await self.gateway.wait_until_terminated(
                    record.region, cloud_id, self.wait_timeout
                )
            except AnywhereError as e:
                await self._fail(record, (InstanceStatus.DELETING,), str(e))
                return

        if self.store.soft_delete(uuid):
            logger.info("Instance %s deleted", uuid)
            await self._emit(uuid, record.region, InstanceStatus.DELETED)

    async def _stop_creation(self, uuid: str) -> bool:
        """Settle an in-flight creation before teardown.

        Waits only until the cloud instance id is stored, then cancels the
        creation so termination does not sit behind the boot wait. Returns
        True if the creation was cancelled.
        """
        creation = self._creations.get(uuid)
        if creation is None or creation.done():
            return False
        logger.info("Waiting for %s to get a cloud instance", uuid)
        while not creation.done():
            current = self.store.get_by_uuid(uuid)
            if current is not None and current.cloud_instance_id:
                logger.info("Cancelling in-flight creation of %s", uuid)
                creation.cancel()
                await asyncio.wait({creation})
                return True
            await asyncio.wait(
                {creation}, timeout=self.config.scheduler.poll_interval
            )
        return False

    async def _remove_endpoint(self, region: str, uuid: str) -> StepOutcome:
        try:
            await self.publisher.remove(outbound_tag_for(region), uuid)
            outcome = StepOutcome.success("unpublish")
        except Exception as e:
            outcome = StepOutcome.failure("unpublish", str(e))
        self.step_outcomes.append(outcome)
        return outcome

    # -- Read side -----------------------------------------------------------

    def _region_name(self, code: str) -> str:
        for r in self.config.aws.regions:
            if r.code == code:
                return r.name or code
        return code

    def _view(self, record: InstanceRecord) -> InstanceView:
        region_name = self._region_name(record.region)
        direct_link = relay_link = ""
        if record.status is InstanceStatus.RUNNING and record.public_address:
            direct_link = build_vmess_link(
                record.public_address,
                record.uuid,
                self.config.proxy.port,
                f"{region_name} direct",
            )
            relay_link = self._relay_link(record.region, region_name)
        return InstanceView.from_record(
            record,
            region_name=region_name,
            direct_link=direct_link,
            relay_link=relay_link,
        )

    def _relay_link(self, region: str, region_name: str) -> str:
        relay_host = self.config.proxy.relay_host
        if not relay_host:
            return ""
        endpoint = self.publisher.relay_config(region)
        if endpoint is None or not endpoint.user_id:
            return ""
        return build_vmess_link(
            relay_host, endpoint.user_id, endpoint.port, f"{region_name} relay"
        )
