"""
Proxy Config Port

Architectural Intent:
- Port interface for the local proxy daemon that relays traffic to endpoints
- Publishing is best-effort from the orchestrator's perspective
- Also answers which relay inbound (if any) serves a region
"""

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class RelayEndpoint:
    port: int
    user_id: str


@runtime_checkable
class ProxyConfigPort(Protocol):
    """Port for local proxy configuration management."""

    async def publish(self, tag: str, address: str, port: int, secret: str) -> None:
        """Upsert an outbound for *tag* and reload the daemon."""
        ...

    async def remove(self, tag: str, secret: Optional[str] = None) -> bool:
        """Drop the outbound for *tag*. Returns False if it was absent.

        With *secret*, the outbound is dropped only if its user id matches,
        so a newer endpoint published under the same tag survives.
        """
        ...

    def relay_config(self, region: str) -> Optional[RelayEndpoint]:
        ...
