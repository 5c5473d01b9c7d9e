"""Tests for the machine store — CRUD, uniqueness, port allocation, atomicity."""

import asyncio
from unittest.mock import MagicMock

import pytest

from bastion_registry.common.config import BastionSettings
from bastion_registry.common.database import DatabaseManager
from bastion_registry.common.exceptions import (
    MachineNotFoundError,
    NameConflictError,
    PoolExhaustedError,
    ValidationError,
)
from bastion_registry.registry.allocator import PortPool
from bastion_registry.registry.store import MachineStore

PORT_MIN = 10022
PORT_MAX = 10099


def make_settings(**overrides) -> BastionSettings:
    defaults = {"db_url": "sqlite+aiosqlite://", "api_key": "test-api-key"}
    defaults.update(overrides)
    return BastionSettings(**defaults)


@pytest.fixture
async def db():
    manager = DatabaseManager(make_settings())
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def store(db):
    return MachineStore(db, PortPool(PORT_MIN, PORT_MAX))


@pytest.fixture
def small_store(db):
    return MachineStore(db, PortPool(20000, 20002))


async def _register(store, name, owner="alice", local_user="alice"):
    return await store.create(name, owner, local_user, f"ssh-ed25519 AAAA {name}")


class TestCreate:
    async def test_create_and_get(self, store):
        machine = await _register(store, "test-machine")
        assert machine.id is not None
        assert PORT_MIN <= machine.port <= PORT_MAX
        assert machine.created_at is not None
        assert machine.last_seen is None

        found = await store.get("test-machine")
        assert found is not None
        assert found.owner == "alice"
        assert found.port == machine.port

    async def test_public_key_trimmed(self, store):
        machine = await store.create("m1", "alice", "alice", "  ssh-ed25519 AAAA m1\n")
        assert machine.public_key == "ssh-ed25519 AAAA m1"

    async def test_distinct_ports_in_range(self, store):
        ports = [(await _register(store, f"m{i}")).port for i in range(20)]
        assert len(set(ports)) == 20
        assert all(PORT_MIN <= p <= PORT_MAX for p in ports)

    async def test_sequential_ports(self, store):
        m1 = await _register(store, "m1")
        m2 = await _register(store, "m2")
        assert m1.port == PORT_MIN
        assert m2.port == PORT_MIN + 1

    async def test_duplicate_name_conflicts(self, store):
        await _register(store, "dup")
        with pytest.raises(NameConflictError):
            await _register(store, "dup")
        assert await store.count() == 1
        # No port consumed by the failed attempt
        other = await _register(store, "other")
        assert other.port == PORT_MIN + 1

    async def test_validation_precedes_storage(self):
        db = MagicMock()
        store = MachineStore(db, PortPool(PORT_MIN, PORT_MAX))
        for key in (
            "ssh-ed25519 AAAA\nssh-ed25519 BBBB",
            "ssh-rsa " + "A" * 2048,
            "ssh-unknown AAAA",
        ):
            with pytest.raises(ValidationError):
                await store.create("m1", "alice", "alice", key)
        with pytest.raises(ValidationError):
            await store.create("bad name", "alice", "alice", "ssh-ed25519 AAAA")
        db.get_session.assert_not_called()

    async def test_invalid_key_leaves_no_record(self, store):
        with pytest.raises(ValidationError):
            await store.create("m1", "alice", "alice", "not-a-key")
        assert await store.count() == 0


class TestPoolExhaustion:
    async def test_full_pool_rejects(self, small_store):
        for i in range(3):
            await _register(small_store, f"m{i}")
        with pytest.raises(PoolExhaustedError):
            await _register(small_store, "one-too-many")
        assert await small_store.count() == 3
        assert await small_store.get("one-too-many") is None

    async def test_delete_frees_port_for_reuse(self, small_store):
        for i in range(3):
            await _register(small_store, f"m{i}")
        first = await small_store.get("m0")
        assert first.port == 20000

        await small_store.delete("m0")
        newcomer = await _register(small_store, "newcomer")
        assert newcomer.port == 20000

    async def test_lowest_gap_reused_first(self, small_store):
        for i in range(3):
            await _register(small_store, f"m{i}")
        await small_store.delete("m2")
        await small_store.delete("m1")
        assert (await _register(small_store, "x")).port == 20001


class TestList:
    async def test_empty(self, store):
        assert await store.list_machines() == []

    async def test_ordered_by_port(self, store):
        await _register(store, "zeta")
        await _register(store, "alpha")
        await _register(store, "mid")
        await store.delete("zeta")
        await _register(store, "reuse")  # takes the lowest port

        names = [m.name for m in await store.list_machines()]
        assert names == ["reuse", "alpha", "mid"]
        ports = [m.port for m in await store.list_machines()]
        assert ports == sorted(ports)


class TestRename:
    async def test_rename(self, store):
        original = await _register(store, "old-name")
        await store.rename("old-name", "new-name")

        assert await store.get("old-name") is None
        renamed = await store.get("new-name")
        assert renamed is not None
        assert renamed.owner == original.owner
        assert renamed.port == original.port
        assert renamed.public_key == original.public_key
        assert renamed.id == original.id

    async def test_rename_not_found(self, store):
        with pytest.raises(MachineNotFoundError):
            await store.rename("ghost", "new-name")

    async def test_rename_to_existing_conflicts(self, store):
        m1 = await _register(store, "m1")
        m2 = await _register(store, "m2")
        with pytest.raises(NameConflictError):
            await store.rename("m1", "m2")

        assert (await store.get("m1")).port == m1.port
        assert (await store.get("m2")).port == m2.port
        assert (await store.get("m2")).public_key == m2.public_key

    async def test_rename_to_same_name_is_noop(self, store):
        m1 = await _register(store, "m1")
        same = await store.rename("m1", "m1")
        assert same.port == m1.port


class TestDelete:
    async def test_delete(self, store):
        await _register(store, "to-delete")
        removed = await store.delete("to-delete")
        assert removed.name == "to-delete"
        assert await store.get("to-delete") is None

    async def test_delete_not_found(self, store):
        with pytest.raises(MachineNotFoundError):
            await store.delete("ghost")

    async def test_delete_twice_is_error(self, store):
        await _register(store, "once")
        await store.delete("once")
        with pytest.raises(MachineNotFoundError):
            await store.delete("once")


class TestHeartbeat:
    async def test_heartbeat_sets_last_seen(self, store):
        await _register(store, "hb")
        await store.heartbeat("hb")
        found = await store.get("hb")
        assert found.last_seen is not None

    async def test_heartbeat_advances(self, store):
        await _register(store, "hb")
        first = (await store.heartbeat("hb")).last_seen
        second = (await store.heartbeat("hb")).last_seen
        assert second >= first

    async def test_heartbeat_not_found(self, store):
        with pytest.raises(MachineNotFoundError):
            await store.heartbeat("ghost")


class TestConcurrency:
    async def test_concurrent_creates_get_distinct_ports(self, tmp_path):
        manager = DatabaseManager(
            make_settings(db_url=f"sqlite+aiosqlite:///{tmp_path}/registry.db")
        )
        await manager.init()
        await manager.create_all()
        try:
            store = MachineStore(manager, PortPool(PORT_MIN, PORT_MAX))
            machines = await asyncio.gather(
                *(_register(store, f"host-{i}") for i in range(15))
            )
            ports = [m.port for m in machines]
            assert len(set(ports)) == 15
            assert sorted(ports) == list(range(PORT_MIN, PORT_MIN + 15))
        finally:
            await manager.close()

    async def test_concurrent_duplicate_names(self, store):
        results = await asyncio.gather(
            *(_register(store, "same") for _ in range(5)),
            return_exceptions=True,
        )
        created = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, NameConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 4
        assert await store.count() == 1
