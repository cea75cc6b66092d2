"""
Instance DTOs

Architectural Intent:
- Data Transfer Objects for the orchestrator's produced interface
- Input validation at the application boundary
- Decouples external representation (REST, CLI, TUI) from the domain model
"""

from dataclasses import dataclass
from typing import Any

from anywhere.domain.entities.instance import InstanceRecord


@dataclass(frozen=True)
class CreateInstanceRequest:
    region: str

    def __post_init__(self) -> None:
        if not self.region or not self.region.strip():
            raise ValueError("region cannot be empty")


@dataclass(frozen=True)
class CreateInstanceResponse:
    uuid: str
    status: str = "pending"

    def to_dict(self) -> dict[str, Any]:
        return {"uuid": self.uuid, "status": self.status}


@dataclass(frozen=True)
class RegionView:
    region: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"region": self.region, "name": self.name}


@dataclass(frozen=True)
class InstanceView:
    uuid: str
    region: str
    region_name: str
    status: str
    cloud_instance_id: str = ""
    public_address: str = ""
    direct_link: str = ""
    relay_link: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(
        cls,
        record: InstanceRecord,
        region_name: str = "",
        direct_link: str = "",
        relay_link: str = "",
    ) -> "InstanceView":
        return cls(
            uuid=record.uuid,
            region=record.region,
            region_name=region_name or record.region,
            status=record.status.value,
            cloud_instance_id=record.cloud_instance_id,
            public_address=record.public_address,
            direct_link=direct_link,
            relay_link=relay_link,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uuid": self.uuid,
            "ec2_id": self.cloud_instance_id,
            "ec2_region": self.region,
            "ec2_region_name": self.region_name,
            "ec2_public_ip": self.public_address,
            "status": self.status,
            "direct_link": self.direct_link,
            "relay_link": self.relay_link,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
