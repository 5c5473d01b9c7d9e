"""Bastion registry: reverse-tunnel machine registry and routing config generator."""

from bastion_registry.agent.client import RegistryClient
from bastion_registry.registry.allocator import PortPool
from bastion_registry.registry.validation import validate_identifier, validate_public_key
from bastion_registry.routing.generator import RoutingConfigGenerator

__all__ = [
    "RegistryClient",
    "PortPool",
    "validate_identifier",
    "validate_public_key",
    "RoutingConfigGenerator",
]
__version__ = "0.1.0"
