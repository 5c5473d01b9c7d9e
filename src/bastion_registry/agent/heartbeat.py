"""Background heartbeat sender."""

import asyncio
import logging
from typing import Optional

from bastion_registry.agent.client import RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 300.0


async def heartbeat_loop(
    client: RegistryClient,
    name: str,
    stop: Optional[asyncio.Event] = None,
    interval: float = DEFAULT_INTERVAL,
) -> int:
    """Post a heartbeat every ``interval`` seconds until ``stop`` is set.

    Returns the number of heartbeats the server acknowledged.
    """
    stop = stop or asyncio.Event()
    acknowledged = 0
    while True:
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return acknowledged
        except asyncio.TimeoutError:
            pass

        ok = await asyncio.to_thread(client.heartbeat, name)
        if ok:
            acknowledged += 1
        else:
            logger.warning("Heartbeat for %s failed", name)
