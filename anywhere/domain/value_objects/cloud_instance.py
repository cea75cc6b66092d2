"""
Cloud Instance Value Object

Architectural Intent:
- Provider-neutral snapshot of one compute instance as observed by the gateway
- Carries the raw provider state plus the lifecycle status derived from it
- ownership_tag is empty for instances this system does not manage
"""

from dataclasses import dataclass

from anywhere.domain.entities.instance import InstanceStatus


@dataclass(frozen=True)
class CloudInstance:
    cloud_id: str
    region: str
    state: str
    public_address: str = ""
    ownership_tag: str = ""

    @property
    def status(self) -> InstanceStatus:
        return InstanceStatus.from_cloud_state(self.state)

    @property
    def is_managed(self) -> bool:
        return bool(self.ownership_tag)
