"""
Instance Module

Architectural Intent:
- InstanceRecord is the unit of persisted state for one proxy endpoint
- Lifecycle managed through InstanceStatus transitions enforced by domain rules
- All changes produce new instances (frozen dataclass) to keep history auditable

Lifecycle:
    pending -> creating -> running -> deleting -> deleted
    error reachable from pending/creating/running/deleting on unrecoverable failure
    deleted reachable from any non-terminal, non-error state once the cloud
    resource is observed to have vanished

Invariants:
- At most one active (pending/creating/running) record per region
- cloud_instance_id is set before status becomes running
- deleted is terminal
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum


class InstanceStatus(Enum):
    PENDING = "pending"
    CREATING = "creating"
    RUNNING = "running"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self is InstanceStatus.DELETED

    def can_transition_to(self, target: "InstanceStatus") -> bool:
        if target is self:
            return not self.is_terminal
        return target in _TRANSITIONS[self]

    @classmethod
    def from_cloud_state(cls, state: str) -> "InstanceStatus":
        """Map an EC2 instance state name onto the lifecycle."""
        return _CLOUD_STATE_MAP.get(state, cls.ERROR)


ACTIVE_STATUSES = frozenset(
    {InstanceStatus.PENDING, InstanceStatus.CREATING, InstanceStatus.RUNNING}
)

_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset(
        {
            InstanceStatus.CREATING,
            InstanceStatus.RUNNING,
            InstanceStatus.DELETING,
            InstanceStatus.DELETED,
            InstanceStatus.ERROR,
        }
    ),
    InstanceStatus.CREATING: frozenset(
        {
            InstanceStatus.RUNNING,
            InstanceStatus.DELETING,
            InstanceStatus.DELETED,
            InstanceStatus.ERROR,
        }
    ),
    InstanceStatus.RUNNING: frozenset(
        {InstanceStatus.DELETING, InstanceStatus.DELETED, InstanceStatus.ERROR}
    ),
    InstanceStatus.DELETING: frozenset(
        {InstanceStatus.DELETED, InstanceStatus.ERROR}
    ),
    # Only an operator's delete request leaves error.
    InstanceStatus.ERROR: frozenset({InstanceStatus.DELETING}),
    InstanceStatus.DELETED: frozenset(),
}

_CLOUD_STATE_MAP = {
    "pending": InstanceStatus.CREATING,
    "running": InstanceStatus.RUNNING,
    "shutting-down": InstanceStatus.DELETING,
    "stopping": InstanceStatus.DELETING,
    "stopped": InstanceStatus.DELETED,
    "terminated": InstanceStatus.DELETED,
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class InstanceRecord:
    uuid: str
    region: str
    status: InstanceStatus = InstanceStatus.PENDING
    cloud_instance_id: str = ""
    public_address: str = ""
    is_deleted: bool = False
    id: int = 0
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def __post_init__(self) -> None:
        if not self.uuid:
            raise ValueError("uuid cannot be empty")
        if not self.region:
            raise ValueError("region cannot be empty")
        if self.status is InstanceStatus.RUNNING and not self.cloud_instance_id:
            raise ValueError("a running instance must have a cloud instance id")

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status.is_active

    def transition_to(self, status: InstanceStatus) -> "InstanceRecord":
        if self.is_deleted or not self.status.can_transition_to(status):
            raise ValueError(
                f"Instance {self.uuid} cannot transition from "
                f"{self.status.value} to {status.value}"
            )
        return replace(self, status=status, updated_at=_now())

    def with_observation(
        self, public_address: str, status: InstanceStatus
    ) -> "InstanceRecord":
        """Apply cloud-observed attributes without validating the edge."""
        return replace(
            self, public_address=public_address, status=status, updated_at=_now()
        )

    def with_cloud_instance(self, cloud_instance_id: str) -> "InstanceRecord":
        return replace(self, cloud_instance_id=cloud_instance_id, updated_at=_now())

    def mark_deleted(self) -> "InstanceRecord":
        return replace(
            self, status=InstanceStatus.DELETED, is_deleted=True, updated_at=_now()
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "cloud_instance_id": self.cloud_instance_id,
            "region": self.region,
            "public_address": self.public_address,
            "status": self.status.value,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
