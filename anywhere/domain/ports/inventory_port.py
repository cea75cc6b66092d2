"""
Inventory Port

Architectural Intent:
- Port interface for the persisted instance inventory
- The store is the single source of truth, re-read before every decision
- Exposes a coarse table-wide lock for the check-then-create admission step

Design Decisions:
- Uses Protocol for structural typing (no inheritance needed)
- Synchronous: every operation is a short local transaction
- Mutations never touch soft-deleted records, so deleted stays terminal
"""

from contextlib import AbstractContextManager
from typing import Iterable, Optional, Protocol, runtime_checkable

from anywhere.domain.entities.instance import InstanceRecord, InstanceStatus


@runtime_checkable
class InventoryPort(Protocol):
    """Port for instance inventory persistence."""

    def create(self, record: InstanceRecord) -> InstanceRecord:
        """Insert a record. Returns it with its assigned row id."""
        ...

    def get_by_uuid(
        self, uuid: str, include_deleted: bool = False
    ) -> Optional[InstanceRecord]:
        ...

    def list_active(self) -> list[InstanceRecord]:
        """All non-deleted records, newest first."""
        ...

    def update(
        self, record: InstanceRecord, expected: Optional[InstanceStatus] = None
    ) -> bool:
        """Write every mutable field of a non-deleted record.

        With *expected*, only if the stored status still equals it.
        """
        ...

    def update_status(self, uuid: str, status: InstanceStatus) -> bool:
        ...

    def update_status_and_address(
        self, uuid: str, status: InstanceStatus, address: str
    ) -> bool:
        ...

    def set_cloud_instance_id(self, uuid: str, cloud_instance_id: str) -> bool:
        ...

    def transition(
        self,
        uuid: str,
        expected: Iterable[InstanceStatus],
        status: InstanceStatus,
        address: Optional[str] = None,
    ) -> bool:
        """Compare-and-set: apply only if the current status is in *expected*."""
        ...

    def soft_delete(self, uuid: str) -> bool:
        ...

    def has_active_in_region(self, region: str) -> bool:
        ...

    def get_active_in_region(self, region: str) -> Optional[InstanceRecord]:
        ...

    def lock(self) -> None:
        ...

    def unlock(self) -> None:
        ...

    def locked(self) -> AbstractContextManager:
        ...
