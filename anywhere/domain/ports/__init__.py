"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the domain needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from anywhere.domain.ports.inventory_port import InventoryPort
from anywhere.domain.ports.cloud_gateway_port import CloudGatewayPort
from anywhere.domain.ports.proxy_config_port import ProxyConfigPort, RelayEndpoint
from anywhere.domain.ports.event_bus_port import EventBusPort

__all__ = [
    "InventoryPort",
    "CloudGatewayPort",
    "ProxyConfigPort",
    "RelayEndpoint",
    "EventBusPort",
]
