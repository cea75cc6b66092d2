"""
Cloud Gateway Port

Architectural Intent:
- Port interface for regional compute capacity (create/describe/terminate)
- Enumerates live instances with their ownership tags independent of inventory
- Implemented by the boto3 EC2 gateway and the in-memory simulated gateway

Design Decisions:
- Every call is a single attempt; failures raise CloudProviderError
- Wait methods poll at a fixed interval and raise ProvisioningTimeoutError
- describe_all never reports terminated instances
"""

from typing import Protocol, runtime_checkable

from anywhere.domain.value_objects.cloud_instance import CloudInstance


@runtime_checkable
class CloudGatewayPort(Protocol):
    """Port for cloud compute operations."""

    async def create(
        self, region: str, bootstrap_payload: str, ownership_tag: str
    ) -> str:
        """Launch one instance. Returns its cloud id."""
        ...

    async def describe_all(self, region: str) -> list[CloudInstance]:
        ...

    async def wait_until_running(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        ...

    async def get_public_address(self, region: str, cloud_id: str) -> str:
        ...

    async def terminate(self, region: str, cloud_id: str) -> None:
        ...

    async def wait_until_terminated(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        """Return once the instance is terminated or no longer exists."""
        ...
