"""
Simulated Cloud Gateway

Architectural Intent:
- Implements CloudGatewayPort entirely in memory, shaped like EC2 responses
- Lets the orchestrator run end to end with zero cloud credentials (--simulate)
- Doubles as the controllable cloud stub for the test suite

Design Decisions:
- Instances move pending -> running after `boot_polls` observations and
  shutting-down -> terminated after `shutdown_polls`; None never advances
- Addresses are drawn from TEST-NET-3 (203.0.113.0/24)
- Test hooks (set_state, set_address, vanish, inject_instance, fail_next)
  mutate the registry directly; call_counts records every API call
- Wait loops poll at `poll_interval` and honour the timeout like the real gateway
"""

import asyncio
import itertools
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from anywhere.domain.errors import CloudProviderError, ProvisioningTimeoutError
from anywhere.domain.value_objects.cloud_instance import CloudInstance
from anywhere.infrastructure.logging import log_cloud_call

logger = logging.getLogger(__name__)

_FAILED_STATES = frozenset({"shutting-down", "terminated", "stopping", "stopped"})


def _make_instance_id() -> str:
    """Return a plausible EC2 instance ID."""
    return "i-" + uuid.uuid4().hex[:17]


@dataclass
class _SimInstance:
    cloud_id: str
    region: str
    state: str = "pending"
    public_address: str = ""
    ownership_tag: str = ""
    user_data: str = ""
    polls_left: Optional[int] = 0

    def snapshot(self) -> CloudInstance:
        return CloudInstance(
            cloud_id=self.cloud_id,
            region=self.region,
            state=self.state,
            public_address=self.public_address,
            ownership_tag=self.ownership_tag,
        )


class SimulatedGateway:
    """In-memory stand-in for regional EC2."""

    def __init__(
        self,
        boot_polls: Optional[int] = 1,
        shutdown_polls: Optional[int] = 1,
        poll_interval: float = 5.0,
    ) -> None:
        self.boot_polls = boot_polls
        self.shutdown_polls = shutdown_polls
        self.poll_interval = poll_interval
        self.call_counts: Counter = Counter()
        self._instances: dict[str, _SimInstance] = {}
        self._failures: dict[str, list[Exception]] = {}
        self._addresses = (f"203.0.113.{i}" for i in itertools.cycle(range(10, 250)))

    # -- Test hooks ----------------------------------------------------------

    def inject_instance(
        self,
        region: str,
        state: str = "running",
        ownership_tag: str = "",
        public_address: str = "",
        cloud_id: Optional[str] = None,
    ) -> str:
        """Place an instance in the registry as if launched out of band."""
        inst = _SimInstance(
            cloud_id=cloud_id or _make_instance_id(),
            region=region,
            state=state,
            public_address=public_address,
            ownership_tag=ownership_tag,
            polls_left=None,
        )
        self._instances[inst.cloud_id] = inst
        return inst.cloud_id

    def set_state(self, cloud_id: str, state: str) -> None:
        inst = self._instances[cloud_id]
        inst.state = state
        inst.polls_left = None

    def set_address(self, cloud_id: str, address: str) -> None:
        self._instances[cloud_id].public_address = address

    def vanish(self, cloud_id: str) -> None:
        self._instances.pop(cloud_id, None)

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make the next call to *operation* raise."""
        self._failures.setdefault(operation, []).append(
            error or CloudProviderError(f"simulated {operation} failure")
        )

    def instances(self, region: Optional[str] = None) -> list[CloudInstance]:
        return [
            i.snapshot()
            for i in self._instances.values()
            if region is None or i.region == region
        ]

    def user_data_for(self, cloud_id: str) -> str:
        return self._instances[cloud_id].user_data

    # -- Internals -----------------------------------------------------------

    def _call(self, operation: str) -> None:
        self.call_counts[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _advance(self, inst: _SimInstance) -> None:
        if inst.polls_left is None:
            return
        if inst.polls_left > 0:
            inst.polls_left -= 1
            return
        if inst.state == "pending":
            inst.state = "running"
            inst.public_address = inst.public_address or next(self._addresses)
            inst.polls_left = None
        elif inst.state == "shutting-down":
            inst.state = "terminated"
            inst.public_address = ""
            inst.polls_left = None

    def _observe(self, cloud_id: str) -> Optional[_SimInstance]:
        inst = self._instances.get(cloud_id)
        if inst is not None:
            self._advance(inst)
        return inst

    # -- CloudGatewayPort ----------------------------------------------------

    async def create(
        self, region: str, bootstrap_payload: str, ownership_tag: str
    ) -> str:
        try:
            self._call("create")
        except CloudProviderError as e:
            log_cloud_call("RunInstances", region, error=e)
            raise
        inst = _SimInstance(
            cloud_id=_make_instance_id(),
            region=region,
            ownership_tag=ownership_tag,
            user_data=bootstrap_payload,
            polls_left=self.boot_polls,
        )
        self._instances[inst.cloud_id] = inst
        log_cloud_call("RunInstances", region, inst.cloud_id, uuid=ownership_tag)
        return inst.cloud_id

    async def describe_all(self, region: str) -> list[CloudInstance]:
        self._call("describe_all")
        result = []
        for inst in list(self._instances.values()):
            if inst.region != region:
                continue
            self._advance(inst)
            if inst.state != "terminated":
                result.append(inst.snapshot())
        return result

    async def wait_until_running(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        self._call("wait_until_running")
        deadline = time.monotonic() + timeout
        while True:
            inst = self._observe(cloud_id)
            if inst is not None:
                if inst.state == "running":
                    return
                if inst.state in _FAILED_STATES:
                    raise CloudProviderError(
                        f"instance {cloud_id} entered {inst.state} while booting"
                    )
            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(cloud_id, "running", timeout)
            await asyncio.sleep(min(self.poll_interval, max(0.0, deadline - time.monotonic())))

    async def get_public_address(self, region: str, cloud_id: str) -> str:
        self._call("get_public_address")
        inst = self._instances.get(cloud_id)
        if inst is None:
            raise CloudProviderError(f"instance {cloud_id} not found in {region}")
        return inst.public_address

    async def terminate(self, region: str, cloud_id: str) -> None:
        self._call("terminate")
        inst = self._instances.get(cloud_id)
        if inst is None or inst.state == "terminated":
            log_cloud_call("TerminateInstances", region, cloud_id, absent=True)
            return
        inst.state = "shutting-down"
        inst.polls_left = self.shutdown_polls
        log_cloud_call("TerminateInstances", region, cloud_id)

    async def wait_until_terminated(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        self._call("wait_until_terminated")
        deadline = time.monotonic() + timeout
        while True:
            inst = self._observe(cloud_id)
            if inst is None or inst.state == "terminated":
                return
            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(cloud_id, "terminated", timeout)
            await asyncio.sleep(min(self.poll_interval, max(0.0, deadline - time.monotonic())))
