"""Dependency injection singletons for the bastion registry."""

from bastion_registry.common.config import get_settings
from bastion_registry.common.database import DatabaseManager
from bastion_registry.registry.allocator import PortPool
from bastion_registry.registry.service import RegistryService
from bastion_registry.registry.store import MachineStore
from bastion_registry.routing.daemon import PiperDaemon
from bastion_registry.routing.generator import RoutingConfigGenerator
from bastion_registry.routing.propagation import ChangePropagator

_db: DatabaseManager | None = None
_store: MachineStore | None = None
_generator: RoutingConfigGenerator | None = None
_daemon: PiperDaemon | None = None
_propagator: ChangePropagator | None = None
_registry: RegistryService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_store() -> MachineStore:
    global _store
    if _store is None:
        settings = get_settings()
        _store = MachineStore(
            get_db(), PortPool(settings.port_min, settings.port_max)
        )
    return _store


def get_generator() -> RoutingConfigGenerator:
    global _generator
    if _generator is None:
        settings = get_settings()
        _generator = RoutingConfigGenerator(
            config_path=settings.config_path,
            keys_dir=settings.keys_dir,
            server_key=settings.server_key,
            authorized_keys_path=settings.authorized_keys_path,
        )
    return _generator


def get_daemon() -> PiperDaemon | None:
    """The supervised routing daemon, or None when supervision is disabled."""
    global _daemon
    settings = get_settings()
    if not settings.piper_enabled:
        return None
    if _daemon is None:
        _daemon = PiperDaemon(settings.piper_command)
    return _daemon


def get_propagator() -> ChangePropagator:
    global _propagator
    if _propagator is None:
        daemon = get_daemon()
        _propagator = ChangePropagator(
            get_store(),
            get_generator(),
            reload_hook=daemon.reload if daemon is not None else None,
        )
    return _propagator


def get_registry_service() -> RegistryService:
    global _registry
    if _registry is None:
        _registry = RegistryService(get_settings(), get_store(), get_propagator())
    return _registry


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _store, _generator, _daemon, _propagator, _registry
    _db = None
    _store = None
    _generator = None
    _daemon = None
    _propagator = None
    _registry = None
