"""Tests for the port pool and allocator."""

import pytest

from bastion_registry.common.config import BastionSettings
from bastion_registry.common.database import DatabaseManager
from bastion_registry.common.exceptions import PoolExhaustedError
from bastion_registry.registry.allocator import PortPool, allocate_port, used_ports
from bastion_registry.registry.models import MachineModel


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


class TestPortPool:
    def test_default_deployment_size(self):
        settings = make_settings()
        pool = PortPool(settings.port_min, settings.port_max)
        assert pool.size == 78

    def test_contains(self):
        pool = PortPool(100, 102)
        assert 100 in pool
        assert 102 in pool
        assert 99 not in pool
        assert 103 not in pool

    def test_empty_range_rejected(self):
        with pytest.raises(ValueError):
            PortPool(200, 100)

    def test_lowest_free_empty(self):
        assert PortPool(100, 105).lowest_free([]) == 100

    def test_first_gap_wins(self):
        assert PortPool(100, 105).lowest_free([100, 101, 103]) == 102

    def test_ignores_ports_outside_pool(self):
        assert PortPool(100, 105).lowest_free([50, 100, 999]) == 101

    def test_exhausted(self):
        with pytest.raises(PoolExhaustedError) as exc_info:
            PortPool(100, 102).lowest_free([100, 101, 102])
        assert "3 slots" in exc_info.value.message
        assert exc_info.value.code == "POOL_EXHAUSTED"

    def test_single_slot_pool(self):
        pool = PortPool(100, 100)
        assert pool.lowest_free([]) == 100
        with pytest.raises(PoolExhaustedError):
            pool.lowest_free([100])


class TestAllocatePort:
    async def test_empty_table_gets_min(self, db):
        async with db.get_session() as session:
            assert await allocate_port(session, PortPool(10022, 10099)) == 10022

    async def test_skips_used_ports(self, db):
        async with db.get_session() as session:
            for name, port in (("a", 10022), ("b", 10023), ("c", 10025)):
                session.add(MachineModel(
                    name=name, owner="o", local_user="u",
                    public_key="ssh-ed25519 AAAA", port=port,
                ))
        async with db.get_session() as session:
            assert await used_ports(session) == {10022, 10023, 10025}
            assert await allocate_port(session, PortPool(10022, 10099)) == 10024
