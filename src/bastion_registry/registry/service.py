"""Registry service — store mutations followed by change propagation."""

import logging

from bastion_registry.common.config import BastionSettings
from bastion_registry.registry.models import MachineModel
from bastion_registry.registry.schemas import RegisterResponse
from bastion_registry.registry.store import MachineStore
from bastion_registry.registry.validation import validate_identifier
from bastion_registry.routing.propagation import ChangePropagator, PropagationResult

logger = logging.getLogger(__name__)


class RegistryService:
    """Machine registration, listing, rename, delete and heartbeat."""

    def __init__(
        self,
        settings: BastionSettings,
        store: MachineStore,
        propagator: ChangePropagator,
    ):
        self.settings = settings
        self.store = store
        self.propagator = propagator

    def _warn_if_stale(self, action: str, name: str, result: PropagationResult) -> None:
        if result.stale:
            logger.warning(
                "%s of %s committed but derived files are stale (%s)",
                action, name, ", ".join(result.errors),
            )

    async def register(
        self,
        name: str,
        owner: str,
        local_user: str,
        public_key: str,
    ) -> RegisterResponse:
        machine = await self.store.create(name, owner, local_user, public_key)
        result = await self.propagator.machine_created(machine)
        self._warn_if_stale("registration", machine.name, result)

        return RegisterResponse(
            name=machine.name,
            port=machine.port,
            server=self.settings.server_url,
            tunnel_port=self.settings.tunnel_port,
            ssh_user=self.settings.ssh_user,
            server_public_key=self.propagator.generator.read_server_public_key(),
        )

    async def get(self, name: str) -> MachineModel | None:
        return await self.store.get(name)

    async def list_machines(self) -> list[MachineModel]:
        return await self.store.list_machines()

    async def rename(self, old_name: str, new_name: str) -> MachineModel:
        validate_identifier(old_name, "name")
        validate_identifier(new_name, "name")
        machine = await self.store.rename(old_name, new_name)
        if old_name != new_name:
            result = await self.propagator.machine_renamed(old_name, machine)
            self._warn_if_stale("rename", new_name, result)
        return machine

    async def delete(self, name: str) -> MachineModel:
        machine = await self.store.delete(name)
        result = await self.propagator.machine_deleted(machine)
        self._warn_if_stale("deletion", name, result)
        return machine

    async def heartbeat(self, name: str) -> MachineModel:
        return await self.store.heartbeat(name)

    async def machine_count(self) -> int:
        return await self.store.count()
