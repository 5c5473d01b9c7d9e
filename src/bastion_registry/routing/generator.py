"""Routing daemon configuration and credential file generation."""

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml

from bastion_registry.registry.models import MachineModel

logger = logging.getLogger(__name__)

TUNNEL_KEY_OPTIONS = "no-pty,no-agent-forwarding,no-X11-forwarding"


def _atomic_write(path: Path, content: str, mode: int) -> None:
    """Write via a temp file in the same directory, then rename over ``path``."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class RoutingConfigGenerator:
    """Derives sshpiper.yaml, per-machine key files and authorized_keys."""

    def __init__(
        self,
        config_path: str,
        keys_dir: str,
        server_key: str,
        authorized_keys_path: str,
    ):
        self.config_path = Path(config_path)
        self.keys_dir = Path(keys_dir)
        self.server_key = server_key
        self.authorized_keys_path = Path(authorized_keys_path)

    def key_path(self, name: str) -> Path:
        return self.keys_dir / f"{name}.pub"

    # ── Per-machine key files ──

    def write_key(self, name: str, public_key: str) -> None:
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.key_path(name), public_key.strip() + "\n", 0o644)

    def remove_key(self, name: str) -> None:
        self.key_path(name).unlink(missing_ok=True)

    def prune_keys(self, keep: set[str]) -> list[str]:
        """Remove key files for names not in ``keep``; returns the removed names."""
        if not self.keys_dir.is_dir():
            return []
        removed = []
        for path in sorted(self.keys_dir.glob("*.pub")):
            name = path.name[: -len(".pub")]
            if name not in keep:
                path.unlink(missing_ok=True)
                removed.append(name)
        return removed

    # ── Routing config ──

    def _pipe(self, machine: MachineModel) -> dict[str, Any]:
        return {
            "from": [
                {
                    "username": machine.name,
                    "authorized_keys": [str(self.key_path(machine.name))],
                },
            ],
            "to": {
                "host": f"localhost:{machine.port}",
                "username": machine.local_user,
                "private_key": self.server_key,
                "ignore_hostkey": True,
            },
        }

    def render(self, machines: Sequence[MachineModel]) -> str:
        """Render the routing document. Same input list, same bytes."""
        document = {
            "version": "1.0",
            "pipes": [self._pipe(m) for m in machines],
        }
        return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)

    def generate(self, machines: Sequence[MachineModel]) -> None:
        """Write the routing document to ``config_path``."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.config_path, self.render(machines), 0o644)

    # ── Tunnel-side credentials ──

    def read_server_public_key(self) -> str:
        try:
            return Path(f"{self.server_key}.pub").read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read server public key %s.pub: %s", self.server_key, exc)
            return ""

    def render_authorized_keys(self, machines: Sequence[MachineModel]) -> str:
        """Server key first, then one port-restricted entry per machine."""
        lines = []
        server_pub = self.read_server_public_key()
        if server_pub:
            lines.append(server_pub)
        for m in machines:
            lines.append(
                f'permitlisten="localhost:{m.port}",{TUNNEL_KEY_OPTIONS} {m.public_key}'
            )
        return "".join(f"{line}\n" for line in lines)

    def update_authorized_keys(self, machines: Sequence[MachineModel]) -> None:
        """Rewrite the authorized_keys file in full."""
        parent = self.authorized_keys_path.parent
        if not parent.exists():
            parent.mkdir(parents=True, mode=0o700)
        _atomic_write(
            self.authorized_keys_path, self.render_authorized_keys(machines), 0o600
        )
