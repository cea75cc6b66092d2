"""
Instance Lifecycle Events

Domain Events:
- InstanceStatusChanged: a record moved to a new status (workflow or reconciler)
- ReconciliationCompleted: one reconciler cycle finished, with drift counts
"""

from dataclasses import dataclass, field
from typing import Any

from anywhere.domain.events.event_base import DomainEvent


@dataclass(frozen=True)
class InstanceStatusChanged(DomainEvent):
    region: str = ""
    status: str = ""
    reason: str = ""

    @property
    def instance_uuid(self) -> str:
        return self.aggregate_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            region=self.region,
            status=self.status,
            reason=self.reason,
        )
        return data


@dataclass(frozen=True)
class ReconciliationCompleted(DomainEvent):
    updated: int = 0
    created: int = 0
    adopted: int = 0
    soft_deleted: int = 0
    skipped_untagged: int = 0
    failed_regions: tuple[str, ...] = field(default_factory=tuple)
    duration_ms: float = 0.0

    @property
    def changed(self) -> int:
        return self.updated + self.created + self.adopted + self.soft_deleted

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            updated=self.updated,
            created=self.created,
            adopted=self.adopted,
            soft_deleted=self.soft_deleted,
            skipped_untagged=self.skipped_untagged,
            failed_regions=list(self.failed_regions),
            duration_ms=self.duration_ms,
        )
        return data
