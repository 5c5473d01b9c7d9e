"""Client-side configuration stored under ~/.config/bastion."""

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional


def default_config_path() -> Path:
    return Path.home() / ".config" / "bastion" / "config.json"


def default_key_path() -> Path:
    return Path.home() / ".ssh" / "bastion-key"


@dataclass
class ClientConfig:
    server_url: str = ""
    api_key: str = ""
    machine_name: str = ""
    assigned_port: int = 0
    key_path: str = ""

    @property
    def server_host(self) -> str:
        """Server URL without scheme or trailing slash."""
        host = self.server_url
        for scheme in ("https://", "http://"):
            if host.startswith(scheme):
                host = host[len(scheme):]
        return host.rstrip("/")

    @property
    def public_key_path(self) -> Path:
        return Path(f"{self.key_path}.pub")


def load_config(path: Optional[Path] = None) -> ClientConfig:
    path = path or default_config_path()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise FileNotFoundError("config not found - run 'bastion init' first") from None
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid config: {exc}") from exc
    known = ClientConfig.__dataclass_fields__
    return ClientConfig(**{k: v for k, v in data.items() if k in known})


def save_config(cfg: ClientConfig, path: Optional[Path] = None) -> Path:
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    path.write_text(json.dumps(asdict(cfg), indent=2), encoding="utf-8")
    path.chmod(0o600)
    return path
