"""Port allocation from the fixed forwarding pool."""

from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bastion_registry.common.exceptions import PoolExhaustedError
from bastion_registry.registry.models import MachineModel


@dataclass(frozen=True)
class PortPool:
    """Closed range [min_port, max_port] of locally forwarded ports."""

    min_port: int
    max_port: int

    def __post_init__(self):
        if self.min_port > self.max_port:
            raise ValueError(
                f"empty port pool: {self.min_port} > {self.max_port}"
            )

    @property
    def size(self) -> int:
        return self.max_port - self.min_port + 1

    def __contains__(self, port: int) -> bool:
        return self.min_port <= port <= self.max_port

    def lowest_free(self, used: Iterable[int]) -> int:
        """Return the lowest port not in ``used``; first gap wins."""
        taken = set(used)
        for port in range(self.min_port, self.max_port + 1):
            if port not in taken:
                return port
        raise PoolExhaustedError(
            f"no available ports (all {self.size} slots in use)"
        )


async def used_ports(session: AsyncSession) -> set[int]:
    result = await session.execute(select(MachineModel.port))
    return set(result.scalars().all())


async def allocate_port(session: AsyncSession, pool: PortPool) -> int:
    """Pick the lowest free port inside the caller's transaction.

    The caller must hold the store write lock until the insert commits.
    """
    return pool.lowest_free(await used_ports(session))
