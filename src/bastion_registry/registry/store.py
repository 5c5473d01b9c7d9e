"""Machine store — durable, uniquely keyed machine records."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bastion_registry.common.database import DatabaseManager
from bastion_registry.common.exceptions import (
    MachineNotFoundError,
    NameConflictError,
    StorageError,
)
from bastion_registry.registry.allocator import PortPool, allocate_port
from bastion_registry.registry.models import MachineModel
from bastion_registry.registry.validation import validate_registration

logger = logging.getLogger(__name__)


def _is_name_violation(exc: IntegrityError) -> bool:
    return "machines.name" in str(exc.orig)


class MachineStore:
    """Machine persistence with serialized mutations.

    Every operation runs in its own transaction. Mutations additionally hold
    a write lock so that port allocation and insert are one atomic unit.
    """

    def __init__(self, db: DatabaseManager, pool: PortPool):
        self._db = db
        self.pool = pool
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.get_session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Storage failure during %s", operation)
            raise StorageError(f"{operation} failed") from exc

    @staticmethod
    async def _find(session: AsyncSession, name: str) -> Optional[MachineModel]:
        result = await session.execute(
            select(MachineModel).where(MachineModel.name == name)
        )
        return result.scalar_one_or_none()

    # ── Queries ──

    async def get(self, name: str) -> Optional[MachineModel]:
        async with self._transaction("get") as session:
            return await self._find(session, name)

    async def list_machines(self) -> list[MachineModel]:
        """All machines, ascending by port."""
        async with self._transaction("list") as session:
            result = await session.execute(
                select(MachineModel).order_by(MachineModel.port)
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self._transaction("count") as session:
            result = await session.execute(
                select(func.count()).select_from(MachineModel)
            )
            return result.scalar_one()

    # ── Mutations ──

    async def create(
        self,
        name: str,
        owner: str,
        local_user: str,
        public_key: str,
    ) -> MachineModel:
        """Validate, allocate a port and insert a new machine."""
        public_key = validate_registration(name, owner, local_user, public_key)

        async with self._write_lock:
            async with self._transaction("create") as session:
                if await self._find(session, name) is not None:
                    raise NameConflictError(f"machine {name!r} already registered")

                port = await allocate_port(session, self.pool)
                machine = MachineModel(
                    name=name,
                    owner=owner,
                    local_user=local_user,
                    public_key=public_key,
                    port=port,
                )
                session.add(machine)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    if _is_name_violation(exc):
                        raise NameConflictError(
                            f"machine {name!r} already registered"
                        ) from exc
                    raise

        logger.info("Registered machine %s on port %d", machine.name, machine.port)
        return machine

    async def rename(self, old_name: str, new_name: str) -> MachineModel:
        async with self._write_lock:
            async with self._transaction("rename") as session:
                machine = await self._find(session, old_name)
                if machine is None:
                    raise MachineNotFoundError(f"machine {old_name!r} not found")
                if new_name == old_name:
                    return machine
                if await self._find(session, new_name) is not None:
                    raise NameConflictError(f"machine {new_name!r} already registered")

                machine.name = new_name
                try:
                    await session.flush()
                except IntegrityError as exc:
                    if _is_name_violation(exc):
                        raise NameConflictError(
                            f"machine {new_name!r} already registered"
                        ) from exc
                    raise

        logger.info("Renamed machine %s -> %s", old_name, new_name)
        return machine

    async def delete(self, name: str) -> MachineModel:
        """Remove a machine and free its port. Returns the removed record."""
        async with self._write_lock:
            async with self._transaction("delete") as session:
                machine = await self._find(session, name)
                if machine is None:
                    raise MachineNotFoundError(f"machine {name!r} not found")
                await session.delete(machine)
                await session.flush()

        logger.info("Deleted machine %s (port %d freed)", machine.name, machine.port)
        return machine

    async def heartbeat(self, name: str) -> MachineModel:
        async with self._write_lock:
            async with self._transaction("heartbeat") as session:
                machine = await self._find(session, name)
                if machine is None:
                    raise MachineNotFoundError(f"machine {name!r} not found")
                machine.last_seen = datetime.now(timezone.utc)
                await session.flush()
        return machine
