"""
Gateway utility functions.
"""

import asyncio
import logging
import socket

logger = logging.getLogger("gateway.utils")


async def resolve_remote_host(address: str, timeout: float) -> str:
    """
    Reverse DNS lookup for REMOTE_HOST.

    Falls back to the address itself when there is no name, the lookup fails
    or it takes longer than ``timeout`` seconds.
    """
    if not address:
        return address

    loop = asyncio.get_running_loop()
    try:
        host, _ = await asyncio.wait_for(
            loop.getnameinfo((address, 0), socket.NI_NAMEREQD), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.debug(f"Reverse lookup of {address} timed out after {timeout}s")
        return address
    except (OSError, ValueError) as e:
        logger.debug(f"Reverse lookup of {address} failed: {e}")
        return address
    return host or address
