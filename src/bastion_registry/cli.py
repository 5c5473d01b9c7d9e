"""Typer CLI for the bastion registry (server and machine agent)."""

import asyncio
import getpass
import os
import signal
import socket
import subprocess
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="bastion", help="SSH bastion registry and tunnel manager")
console = Console()


def _load_config():
    from bastion_registry.agent.config import load_config

    try:
        return load_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _client(cfg):
    from bastion_registry.agent.client import RegistryClient

    try:
        return RegistryClient(cfg.server_url, api_key=cfg.api_key)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def add_to_authorized_keys(public_key: str, path: Path | None = None) -> bool:
    """Append ``public_key`` unless already present. Returns True if added."""
    path = path or Path.home() / ".ssh" / "authorized_keys"
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    public_key = public_key.strip()
    if public_key in (line.strip() for line in existing.splitlines()):
        return False
    if existing and not existing.endswith("\n"):
        existing += "\n"
    path.write_text(existing + public_key + "\n", encoding="utf-8")
    path.chmod(0o600)
    return True


# ── Server ──


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host (default from BASTION_HOST)"),
    port: int = typer.Option(None, help="Bind port (default from BASTION_PORT)"),
):
    """Start the registry API server."""
    import uvicorn
    from bastion_registry.app import create_app
    from bastion_registry.common.config import get_settings
    from bastion_registry.common.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level)
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting bastion registry on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def regenerate():
    """Rebuild key files, routing config and authorized_keys from the database."""
    from bastion_registry.deps import get_db, get_propagator

    async def _run():
        db = get_db()
        await db.init()
        await db.create_all()
        try:
            return await get_propagator().resync()
        finally:
            await db.close()

    result = asyncio.run(_run())
    if result.stale:
        console.print(f"[bold red]Regeneration incomplete:[/bold red] {', '.join(result.errors)}")
        raise typer.Exit(1)
    console.print(f"[bold green]Generated config for {result.machine_count} machines[/bold green]")


# ── Machine agent ──


@app.command()
def init(
    server_url: str = typer.Option(..., prompt="Server URL", help="Registry URL (https://...)"),
    api_key: str = typer.Option(..., prompt="API Key", hide_input=True),
    machine_name: str = typer.Option(socket.gethostname(), prompt="Machine name"),
    key_path: str = typer.Option(
        str(Path.home() / ".ssh" / "bastion-key"), prompt="SSH key path"
    ),
):
    """Save client config and generate an SSH keypair if needed."""
    from bastion_registry.agent.config import ClientConfig, save_config

    key = Path(key_path).expanduser()
    cfg = ClientConfig(
        server_url=server_url,
        api_key=api_key,
        machine_name=machine_name,
        key_path=str(key),
    )

    if key.exists():
        console.print("SSH key already exists, keeping it.")
    else:
        console.print("Generating SSH keypair...")
        key.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        try:
            subprocess.run(
                ["ssh-keygen", "-t", "ed25519", "-f", str(key), "-N", "",
                 "-C", f"bastion-{machine_name}"],
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            console.print(f"[bold red]Failed to generate key:[/bold red] {e}")
            raise typer.Exit(1)

    path = save_config(cfg)
    console.print(f"\nConfig saved to {path}")
    console.print("Next: run 'bastion register --owner <you>' to register this machine.")


@app.command()
def register(
    owner: str = typer.Option(..., help="Owner name"),
    local_user: str = typer.Option(None, help="Local SSH username (defaults to $USER)"),
):
    """Register this machine with the bastion server."""
    from bastion_registry.agent.config import save_config

    cfg = _load_config()
    try:
        public_key = cfg.public_key_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        console.print(f"[bold red]Cannot read public key {cfg.public_key_path}:[/bold red] {e}")
        raise typer.Exit(1)

    local_user = local_user or os.environ.get("USER") or getpass.getuser()
    client = _client(cfg)
    try:
        result = client.register(cfg.machine_name, owner, local_user, public_key)
    finally:
        client.close()

    if not result.success:
        console.print(f"[bold red]Registration failed:[/bold red] {result.message}")
        raise typer.Exit(1)

    cfg.assigned_port = result.port
    save_config(cfg)

    if result.server_public_key:
        try:
            if add_to_authorized_keys(result.server_public_key):
                console.print("Added server public key to ~/.ssh/authorized_keys")
        except OSError as e:
            console.print(f"[yellow]Warning:[/yellow] failed to add server key: {e}")
            console.print(f"Add this key manually:\n  {result.server_public_key}")

    host = cfg.server_host
    console.print("[bold green]Registered successfully![/bold green]")
    console.print(f"  Machine: {result.name}")
    console.print(f"  Port:    {result.port}")
    console.print(f"  Server:  {result.server}")
    console.print("\nRun 'bastion connect' to start the tunnel.")
    console.print("\n--- SSH client setup ---")
    console.print(f"  ssh -i <your-bastion-key> {result.name}@{host}\n")
    console.print(f"  Host {result.name}\n      HostName {host}\n      User {result.name}\n"
                  "      IdentityFile ~/.ssh/bastion-key")


@app.command()
def connect(
    local_port: int = typer.Option(22, help="Local SSH port to expose"),
    tunnel_port: int = typer.Option(2222, help="Server tunnel sshd port"),
    ssh_user: str = typer.Option("bastion", help="Tunnel login user on the server"),
    heartbeat_interval: float = typer.Option(300.0, help="Seconds between heartbeats"),
):
    """Establish the reverse SSH tunnel (foreground, auto-reconnect)."""
    from bastion_registry.agent.heartbeat import heartbeat_loop
    from bastion_registry.agent.tunnel import TunnelConfig, run_tunnel
    from bastion_registry.common.logging import setup_logging

    cfg = _load_config()
    if not cfg.assigned_port:
        console.print("[bold red]No assigned port[/bold red] - run 'bastion register' first")
        raise typer.Exit(1)
    setup_logging()

    tunnel_cfg = TunnelConfig(
        server_host=cfg.server_host,
        remote_port=cfg.assigned_port,
        key_path=cfg.key_path,
        tunnel_port=tunnel_port,
        local_port=local_port,
        ssh_user=ssh_user,
    )

    async def _run():
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        client = _client(cfg)
        try:
            beats = asyncio.create_task(
                heartbeat_loop(client, cfg.machine_name, stop, heartbeat_interval)
            )
            await run_tunnel(tunnel_cfg, stop)
            stop.set()
            await beats
        finally:
            client.close()

    console.print(
        f"Connecting tunnel: localhost:{local_port} -> {cfg.server_host}:{tunnel_port} "
        f"(remote port {cfg.assigned_port})"
    )
    asyncio.run(_run())
    console.print("Disconnected.")


@app.command("list")
def list_machines():
    """List registered machines, ordered by port."""
    cfg = _load_config()
    client = _client(cfg)
    try:
        machines = client.list_machines()
    except RuntimeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    finally:
        client.close()

    table = Table("NAME", "OWNER", "PORT", "USER", "LAST SEEN")
    for m in machines:
        last_seen = m.last_seen.strftime("%Y-%m-%d %H:%M") if m.last_seen else "-"
        table.add_row(m.name, m.owner, str(m.port), m.local_user, last_seen)
    console.print(table)


@app.command()
def delete(
    name: str = typer.Argument(None, help="Machine name (defaults to this machine)"),
):
    """Delete a machine registration."""
    from bastion_registry.agent.config import save_config

    cfg = _load_config()
    name = name or cfg.machine_name
    client = _client(cfg)
    try:
        result = client.delete(name)
    finally:
        client.close()

    if not result.success:
        console.print(f"[bold red]Delete failed:[/bold red] {result.message}")
        raise typer.Exit(1)
    if name == cfg.machine_name:
        cfg.assigned_port = 0
        save_config(cfg)
    console.print(f"Deleted {name}")


@app.command()
def rename(new_name: str = typer.Argument(..., help="New machine name")):
    """Rename this machine on the server."""
    from bastion_registry.agent.config import save_config

    cfg = _load_config()
    old_name = cfg.machine_name
    client = _client(cfg)
    try:
        result = client.rename(old_name, new_name)
    finally:
        client.close()

    if not result.success:
        console.print(f"[bold red]Rename failed:[/bold red] {result.message}")
        raise typer.Exit(1)
    cfg.machine_name = new_name
    save_config(cfg)
    console.print(f"Renamed {old_name!r} -> {new_name!r}")


@app.command()
def status():
    """Show server status and this machine's registration."""
    cfg = _load_config()
    client = _client(cfg)
    try:
        data = client.status()
    finally:
        client.close()

    if "error" in data:
        console.print(f"[bold red]Error:[/bold red] {data['error']}")
        raise typer.Exit(1)
    console.print(f"Server:   [bold green]{data.get('status')}[/bold green] "
                  f"({data.get('machine_count', 0)} machines)")
    console.print(f"Machine:  {cfg.machine_name}")
    console.print(f"Port:     {cfg.assigned_port or 'not registered'}")


if __name__ == "__main__":
    app()
