"""Preview port allocation."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

from slidev_runtime.errors import ResourceExhausted

logger = logging.getLogger(__name__)

PROBE_HOST = "0.0.0.0"


def is_port_available(port: int, host: str = PROBE_HOST) -> bool:
    """
    Probe whether a TCP port can be bound right now.

    Opens a listening socket on the port and closes it again. Ports held by
    unrelated processes on the host fail the probe even though this service
    never reserved them.

    Parameters:
        port (int): Port to probe.
        host (str): Interface to bind; defaults to all interfaces.

    Returns:
        bool: True if the bind and listen succeeded, False otherwise.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(1)
        return True
    except OSError:
        return False


class PortAllocator:
    def __init__(self, start: int = 5500, end: int = 6500) -> None:
        """
        Initialize the allocator for the inclusive port range [start, end].

        Parameters:
            start (int): First port of the range.
            end (int): Last port of the range; must be greater than or equal to `start`.
        """
        if end < start:
            raise ValueError(f"invalid port range {start}-{end}")
        self._start = start
        self._end = end
        self._reserved: set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def reserved(self) -> frozenset[int]:
        return frozenset(self._reserved)

    async def allocate(self, preferred: Optional[int] = None) -> int:
        """
        Reserve and return a free port.

        A preferred port is returned when it is not already reserved and passes
        the bind probe. Otherwise the range is scanned in ascending order and the
        first unreserved port that passes the probe is returned.

        Parameters:
            preferred (Optional[int]): Port the caller would like to use.

        Returns:
            int: The reserved port.

        Raises:
            ResourceExhausted: If no port in the range is available.
        """
        async with self._lock:
            if preferred and preferred not in self._reserved and is_port_available(preferred):
                self._reserved.add(preferred)
                return preferred

            for port in range(self._start, self._end + 1):
                if port in self._reserved:
                    continue
                if is_port_available(port):
                    self._reserved.add(port)
                    return port

        logger.warning("No free preview port in %d-%d", self._start, self._end)
        raise ResourceExhausted("no available port")

    def release(self, port: int) -> None:
        """Return a port to the pool; releasing an unreserved port is a no-op."""
        self._reserved.discard(port)

    def reset(self) -> None:
        self._reserved.clear()
