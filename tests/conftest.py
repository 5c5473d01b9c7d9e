"""Shared test fixtures for the bastion registry."""

import pytest
from httpx import ASGITransport, AsyncClient


API_KEY = "test-api-key"
SERVER_PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIServerKey bastion-server"


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def server_public_key():
    return SERVER_PUBLIC_KEY


@pytest.fixture
def artifacts(tmp_path):
    """Filesystem locations for generated files, with a server keypair stub."""
    server_key = tmp_path / "server-key"
    server_key.write_text("PRIVATE KEY STUB\n")
    (tmp_path / "server-key.pub").write_text(SERVER_PUBLIC_KEY + "\n")
    keys_dir = tmp_path / "keys"
    keys_dir.mkdir()
    return {
        "keys_dir": keys_dir,
        "config_path": tmp_path / "sshpiper.yaml",
        "server_key": server_key,
        "authorized_keys_path": tmp_path / "home" / ".ssh" / "authorized_keys",
    }


def _configure_env(monkeypatch, artifacts, **extra):
    monkeypatch.setenv("BASTION_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("BASTION_API_KEY", API_KEY)
    monkeypatch.setenv("BASTION_SERVER_URL", "test.example.com")
    monkeypatch.setenv("BASTION_KEYS_DIR", str(artifacts["keys_dir"]))
    monkeypatch.setenv("BASTION_CONFIG_PATH", str(artifacts["config_path"]))
    monkeypatch.setenv("BASTION_SERVER_KEY", str(artifacts["server_key"]))
    monkeypatch.setenv("BASTION_AUTHORIZED_KEYS_PATH", str(artifacts["authorized_keys_path"]))
    monkeypatch.setenv("BASTION_PIPER_ENABLED", "false")
    for key, value in extra.items():
        monkeypatch.setenv(f"BASTION_{key.upper()}", str(value))

    # Clear caches and singletons so new env vars take effect
    from bastion_registry.common.config import get_settings
    get_settings.cache_clear()

    from bastion_registry.deps import reset_singletons
    reset_singletons()


@pytest.fixture
def pool_overrides():
    """Override in a test module to shrink the port pool."""
    return {}


@pytest.fixture
def app(monkeypatch, artifacts, pool_overrides):
    """Create a test app with in-memory DB and temp artifact paths."""
    _configure_env(monkeypatch, artifacts, **pool_overrides)

    from bastion_registry.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from bastion_registry.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def auth_headers():
    return {"X-API-Key": API_KEY}
