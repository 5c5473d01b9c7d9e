"""Change propagation — regenerate derived files after store mutations.

The store is the source of truth. Generated files are a derived cache:
a failure here is logged and reported as a stale outcome, never rolled
back into the mutation that triggered it.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from bastion_registry.registry.models import MachineModel
from bastion_registry.registry.store import MachineStore
from bastion_registry.routing.generator import RoutingConfigGenerator

logger = logging.getLogger(__name__)


@dataclass
class PropagationResult:
    """Outcome of one regeneration pass."""

    machine_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def stale(self) -> bool:
        return bool(self.errors)


class ChangePropagator:
    """Rebuilds routing config and credentials, then notifies the daemon."""

    def __init__(
        self,
        store: MachineStore,
        generator: RoutingConfigGenerator,
        reload_hook: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.generator = generator
        self.reload_hook = reload_hook
        self._lock = asyncio.Lock()

    async def regenerate(self) -> PropagationResult:
        async with self._lock:
            return await self._regenerate()

    async def _regenerate(self) -> PropagationResult:
        result = PropagationResult()
        try:
            machines = await self.store.list_machines()
        except Exception:
            logger.exception("Failed to list machines for regeneration")
            result.errors.append("list")
            return result
        result.machine_count = len(machines)

        try:
            self.generator.generate(machines)
        except Exception:
            logger.exception("Failed to write routing config %s", self.generator.config_path)
            result.errors.append("config")

        try:
            self.generator.update_authorized_keys(machines)
        except Exception:
            logger.exception(
                "Failed to update authorized_keys %s", self.generator.authorized_keys_path
            )
            result.errors.append("authorized_keys")

        # The daemon keeps serving the previous config until a new one is written
        if self.reload_hook is not None and "config" not in result.errors:
            try:
                self.reload_hook()
            except Exception:
                logger.exception("Routing daemon reload hook failed")
                result.errors.append("reload")

        return result

    def _write_key(self, machine: MachineModel, result: PropagationResult) -> None:
        try:
            self.generator.write_key(machine.name, machine.public_key)
        except Exception:
            logger.exception("Failed to write key for %s", machine.name)
            result.errors.append("key")

    def _remove_key(self, name: str, result: PropagationResult) -> None:
        try:
            self.generator.remove_key(name)
        except Exception:
            logger.exception("Failed to remove key for %s", name)
            result.errors.append("key")

    async def machine_created(self, machine: MachineModel) -> PropagationResult:
        async with self._lock:
            pre = PropagationResult()
            self._write_key(machine, pre)
            result = await self._regenerate()
        result.errors[:0] = pre.errors
        return result

    async def machine_deleted(self, machine: MachineModel) -> PropagationResult:
        async with self._lock:
            pre = PropagationResult()
            self._remove_key(machine.name, pre)
            result = await self._regenerate()
        result.errors[:0] = pre.errors
        return result

    async def machine_renamed(
        self, old_name: str, machine: MachineModel
    ) -> PropagationResult:
        async with self._lock:
            pre = PropagationResult()
            self._write_key(machine, pre)
            if old_name != machine.name:
                self._remove_key(old_name, pre)
            result = await self._regenerate()
        result.errors[:0] = pre.errors
        return result

    async def resync(self) -> PropagationResult:
        """Rewrite every key file and regenerate; used at startup."""
        async with self._lock:
            pre = PropagationResult()
            try:
                machines = await self.store.list_machines()
            except Exception:
                logger.exception("Failed to list machines for resync")
                pre.errors.append("list")
                return pre
            for machine in machines:
                self._write_key(machine, pre)
            try:
                pruned = self.generator.prune_keys({m.name for m in machines})
            except Exception:
                logger.exception("Failed to prune key files in %s", self.generator.keys_dir)
                pre.errors.append("key")
            else:
                if pruned:
                    logger.info("Removed orphaned key files: %s", ", ".join(pruned))
            result = await self._regenerate()
        result.errors[:0] = pre.errors
        logger.info(
            "Generated routing config for %d machines", result.machine_count
        )
        return result
