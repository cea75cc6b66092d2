"""
Domain Errors

Architectural Intent:
- Single error taxonomy shared by every layer of the orchestrator
- Synchronous operations raise these directly to callers
- Async workflows translate them into the `error` instance status

Design Decisions:
- Adapters translate library exceptions (sqlite3, botocore) into this hierarchy
  so use cases never depend on an SDK's exception types
- ProvisioningTimeoutError is also a builtin TimeoutError for callers that
  only care about the timeout nature of the failure
"""


class AnywhereError(Exception):
    """Base class for all orchestrator errors."""


class ConfigurationError(AnywhereError):
    """Static configuration is missing or inconsistent."""


class InvalidRegionError(ConfigurationError):
    def __init__(self, region: str) -> None:
        super().__init__(f"invalid region: {region!r}")
        self.region = region


class InstanceNotFoundError(AnywhereError):
    def __init__(self, uuid: str) -> None:
        super().__init__(f"instance not found: {uuid}")
        self.uuid = uuid


class ConcurrencyViolationError(AnywhereError):
    """A second active instance was found for a region after admission."""

    def __init__(self, region: str, uuid: str) -> None:
        super().__init__(
            f"duplicate active instance detected in region {region} (rolled back {uuid})"
        )
        self.region = region
        self.uuid = uuid


class PersistenceError(AnywhereError):
    """An inventory store operation failed."""


class CloudProviderError(AnywhereError):
    """A cloud API call failed. Never retried."""


TransientProviderError = CloudProviderError


class ProvisioningTimeoutError(CloudProviderError, TimeoutError):
    """Polling for a cloud state exceeded its configured bound."""

    def __init__(self, cloud_id: str, target_state: str, timeout: float) -> None:
        super().__init__(
            f"timed out after {timeout:g}s waiting for {cloud_id} to reach {target_state}"
        )
        self.cloud_id = cloud_id
        self.target_state = target_state
        self.timeout = timeout


class ProxyConfigError(AnywhereError):
    """The local proxy configuration could not be read or written."""
