"""
EC2 Cloud Gateway

Architectural Intent:
- Implements CloudGatewayPort against AWS EC2 with boto3
- One EC2 client per configured region, built from the injected AWSConfig
- Blocking SDK calls run in the default executor so the event loop stays free

Design Decisions:
- Instances launch from the region's launch template with the bootstrap
  script as UserData (boto3 base64-encodes it) and a `UUID` ownership tag
- Every call is a single attempt; botocore errors become CloudProviderError
- Wait loops poll describe_instances every `poll_interval` seconds until the
  target state, a failure state, or the deadline (ProvisioningTimeoutError)
- InvalidInstanceID.NotFound means the instance is gone, which counts as
  success for terminate and wait_until_terminated
"""

import asyncio
import logging
import time
from functools import partial
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from anywhere.domain.errors import (
    CloudProviderError,
    ConfigurationError,
    ProvisioningTimeoutError,
)
from anywhere.domain.value_objects.cloud_instance import CloudInstance
from anywhere.infrastructure.config import AWSConfig, RegionConfig
from anywhere.infrastructure.logging import log_cloud_call

logger = logging.getLogger(__name__)

OWNERSHIP_TAG_KEY = "UUID"
NOT_FOUND_CODE = "InvalidInstanceID.NotFound"

_LIVE_STATES = ["pending", "running", "shutting-down", "stopping", "stopped"]
_BOOT_FAILURE_STATES = frozenset({"shutting-down", "terminated", "stopping", "stopped"})


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def _ownership_tag(instance: dict) -> str:
    for tag in instance.get("Tags", []):
        if tag.get("Key") == OWNERSHIP_TAG_KEY:
            return tag.get("Value", "")
    return ""


def _to_cloud_instance(region: str, instance: dict) -> CloudInstance:
    return CloudInstance(
        cloud_id=instance["InstanceId"],
        region=region,
        state=instance.get("State", {}).get("Name", ""),
        public_address=instance.get("PublicIpAddress", ""),
        ownership_tag=_ownership_tag(instance),
    )


class Ec2Gateway:
    """
    Regional EC2 capacity behind CloudGatewayPort.

    Parameters
    ----------
    config:
        Credentials and the region table. Empty keys defer to boto3's default
        credential chain.
    poll_interval:
        Seconds between describe calls inside the wait loops.
    client_factory:
        Optional callable ``(region) -> client``; defaults to a boto3 session.
    """

    def __init__(
        self,
        config: AWSConfig,
        poll_interval: float = 5.0,
        client_factory: Optional[Any] = None,
    ) -> None:
        self._config = config
        self._regions: dict[str, RegionConfig] = {r.code: r for r in config.regions}
        self.poll_interval = poll_interval
        self._client_factory = client_factory or self._session_client
        self._clients: dict[str, Any] = {}

    def _session_client(self, region: str) -> Any:
        session = boto3.session.Session(
            aws_access_key_id=self._config.access_key or None,
            aws_secret_access_key=self._config.secret_key or None,
            region_name=region,
        )
        return session.client("ec2")

    def _client(self, region: str) -> Any:
        if region not in self._regions:
            raise ConfigurationError(f"region {region} is not configured")
        if region not in self._clients:
            try:
                self._clients[region] = self._client_factory(region)
            except (ClientError, BotoCoreError) as e:
                log_cloud_call("CreateClient", region, error=e)
                raise CloudProviderError(f"EC2 client for {region}: {e}") from e
        return self._clients[region]

    async def _run(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def _describe_one(self, region: str, cloud_id: str) -> Optional[dict]:
        """Current instance dict, or None if EC2 no longer knows the id."""
        try:
            response = await self._run(
                self._client(region).describe_instances, InstanceIds=[cloud_id]
            )
        except ClientError as e:
            if _error_code(e) == NOT_FOUND_CODE:
                return None
            raise CloudProviderError(f"DescribeInstances {cloud_id}: {e}") from e
        except BotoCoreError as e:
            raise CloudProviderError(f"DescribeInstances {cloud_id}: {e}") from e
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("InstanceId") == cloud_id:
                    return instance
        return None

    # -- CloudGatewayPort ----------------------------------------------------

    async def create(
        self, region: str, bootstrap_payload: str, ownership_tag: str
    ) -> str:
        template_id = self._regions.get(region, RegionConfig(code=region)).template_id
        if not template_id:
            raise ConfigurationError(f"no launch template configured for {region}")
        try:
            response = await self._run(
                self._client(region).run_instances,
                LaunchTemplate={"LaunchTemplateId": template_id},
                MinCount=1,
                MaxCount=1,
                UserData=bootstrap_payload,
                TagSpecifications=[
                    {
                        "ResourceType": "instance",
                        "Tags": [{"Key": OWNERSHIP_TAG_KEY, "Value": ownership_tag}],
                    }
                ],
            )
        except (ClientError, BotoCoreError) as e:
            log_cloud_call("RunInstances", region, error=e, uuid=ownership_tag)
            raise CloudProviderError(f"RunInstances in {region}: {e}") from e

        instances = response.get("Instances", [])
        if not instances:
            raise CloudProviderError(f"RunInstances in {region} returned no instance")
        cloud_id = instances[0]["InstanceId"]
        log_cloud_call("RunInstances", region, cloud_id, uuid=ownership_tag)
        return cloud_id

    async def describe_all(self, region: str) -> list[CloudInstance]:
        client = self._client(region)

        def _collect() -> list[dict]:
            paginator = client.get_paginator("describe_instances")
            found = []
            for page in paginator.paginate(
                Filters=[{"Name": "instance-state-name", "Values": _LIVE_STATES}]
            ):
                for reservation in page.get("Reservations", []):
                    found.extend(reservation.get("Instances", []))
            return found

        try:
            raw = await self._run(_collect)
        except (ClientError, BotoCoreError) as e:
            log_cloud_call("DescribeInstances", region, error=e)
            raise CloudProviderError(f"DescribeInstances in {region}: {e}") from e

        instances = [
            _to_cloud_instance(region, i)
            for i in raw
            if i.get("State", {}).get("Name") != "terminated"
        ]
        logger.debug("Described %d instances in %s", len(instances), region)
        return instances

    async def wait_until_running(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        deadline = time.monotonic() + timeout
        while True:
            instance = await self._describe_one(region, cloud_id)
            state = instance.get("State", {}).get("Name", "") if instance else ""
            if state == "running":
                log_cloud_call("WaitRunning", region, cloud_id, state=state)
                return
            if state in _BOOT_FAILURE_STATES:
                error = CloudProviderError(
                    f"instance {cloud_id} entered {state} while booting"
                )
                log_cloud_call("WaitRunning", region, cloud_id, error=error)
                raise error
            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(cloud_id, "running", timeout)
            await asyncio.sleep(self.poll_interval)

    async def get_public_address(self, region: str, cloud_id: str) -> str:
        instance = await self._describe_one(region, cloud_id)
        if instance is None:
            raise CloudProviderError(f"instance {cloud_id} not found in {region}")
        return instance.get("PublicIpAddress", "")

    async def terminate(self, region: str, cloud_id: str) -> None:
        try:
            await self._run(
                self._client(region).terminate_instances, InstanceIds=[cloud_id]
            )
        except ClientError as e:
            if _error_code(e) == NOT_FOUND_CODE:
                log_cloud_call("TerminateInstances", region, cloud_id, absent=True)
                return
            log_cloud_call("TerminateInstances", region, cloud_id, error=e)
            raise CloudProviderError(f"TerminateInstances {cloud_id}: {e}") from e
        except BotoCoreError as e:
            log_cloud_call("TerminateInstances", region, cloud_id, error=e)
            raise CloudProviderError(f"TerminateInstances {cloud_id}: {e}") from e
        log_cloud_call("TerminateInstances", region, cloud_id)

    async def wait_until_terminated(
        self, region: str, cloud_id: str, timeout: float
    ) -> None:
        deadline = time.monotonic() + timeout
        while True:
            instance = await self._describe_one(region, cloud_id)
            if instance is None or instance.get("State", {}).get("Name") == "terminated":
                log_cloud_call("WaitTerminated", region, cloud_id)
                return
            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(cloud_id, "terminated", timeout)
            await asyncio.sleep(self.poll_interval)
