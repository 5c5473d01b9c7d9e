"""Reverse SSH tunnel with automatic reconnection."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

BACKOFF_BASE = 2.0
BACKOFF_CAP = 60.0


@dataclass
class TunnelConfig:
    server_host: str
    remote_port: int
    key_path: str
    tunnel_port: int = 2222
    local_port: int = 22
    ssh_user: str = "bastion"


def backoff_delay(attempt: int, base: float = BACKOFF_BASE, cap: float = BACKOFF_CAP) -> float:
    """Delay before reconnect ``attempt`` (1-based): 2, 4, 8, ... capped at 60."""
    return min(cap, base ** attempt)


def build_ssh_args(cfg: TunnelConfig) -> list[str]:
    known_hosts = Path(cfg.key_path).parent / "bastion_known_hosts"
    return [
        "-N",
        "-o", "ExitOnForwardFailure=yes",
        "-o", "ServerAliveInterval=30",
        "-o", "ServerAliveCountMax=3",
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", f"UserKnownHostsFile={known_hosts}",
        "-i", cfg.key_path,
        "-R", f"{cfg.remote_port}:localhost:{cfg.local_port}",
        "-p", str(cfg.tunnel_port),
        f"{cfg.ssh_user}@{cfg.server_host}",
    ]


async def run_ssh_once(cfg: TunnelConfig) -> int:
    """Run one ssh session; returns its exit code. Cancellation kills ssh."""
    proc = await asyncio.create_subprocess_exec("ssh", *build_ssh_args(cfg))
    try:
        return await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.terminate()
            await proc.wait()
        raise


async def _wait_or_stop(stop: asyncio.Event, delay: float) -> bool:
    """Sleep ``delay`` seconds; return True early if ``stop`` is set."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def run_tunnel(
    cfg: TunnelConfig,
    stop: Optional[asyncio.Event] = None,
    runner: Optional[Callable[[TunnelConfig], Awaitable[int]]] = None,
    base: float = BACKOFF_BASE,
    cap: float = BACKOFF_CAP,
) -> int:
    """Keep the tunnel up until ``stop`` is set or the task is cancelled.

    Retries forever with exponential backoff. Returns the number of
    connection attempts made.
    """
    stop = stop or asyncio.Event()
    runner = runner or run_ssh_once
    attempt = 0

    while not stop.is_set():
        logger.info("Connecting tunnel (attempt %d)...", attempt + 1)
        session = asyncio.ensure_future(runner(cfg))
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({session, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not session.done():
                session.cancel()
                try:
                    await session
                except asyncio.CancelledError:
                    pass
        attempt += 1
        if stop.is_set():
            break

        try:
            reason = f"ssh exited with status {session.result()}"
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
        delay = backoff_delay(attempt, base, cap)
        logger.warning("Tunnel disconnected: %s. Reconnecting in %.0fs...", reason, delay)

        if await _wait_or_stop(stop, delay):
            break

    return attempt
