"""Host port allocation for sandbox containers.

:class:`PortAllocator` returns the lowest port in the configured range that
is neither held by an active instance record nor published by a live
container.  Port state is read fresh on every call.

:class:`PortReservations` optionally closes the check-then-act window
between allocation and record persistence for callers in the same process.
The runtime's own bind-time rejection stays the final authority.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from apihub.errors import NoCapacityError
from apihub.models import ACTIVE_STATUSES

if TYPE_CHECKING:
    from collections.abc import Callable

    from apihub.provisioning.lifecycle import ContainerLifecycleManager
    from apihub.store import RecordStore

logger = logging.getLogger(__name__)


class PortReservations:
    """Short-lived in-memory claims on host ports, keyed by port."""

    def __init__(self, ttl: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._held: dict[int, float] = {}
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def held(self) -> set[int]:
        """Ports with an unexpired reservation. Caller must hold :attr:`lock`."""
        now = self._clock()
        for port in [p for p, expiry in self._held.items() if expiry <= now]:
            del self._held[port]
        return set(self._held)

    def claim(self, port: int) -> None:
        """Reserve *port*. Caller must hold :attr:`lock`."""
        self._held[port] = self._clock() + self._ttl

    def release(self, port: int) -> None:
        self._held.pop(port, None)


class PortAllocator:
    """Lowest-free-port allocator over ``[min_port, max_port]``."""

    def __init__(
        self,
        store: RecordStore,
        lifecycle: ContainerLifecycleManager,
        *,
        min_port: int,
        max_port: int,
        reservations: PortReservations | None = None,
    ) -> None:
        if min_port > max_port:
            msg = f"min_port ({min_port}) must not exceed max_port ({max_port})"
            raise ValueError(msg)
        self._store = store
        self._lifecycle = lifecycle
        self.min_port = min_port
        self.max_port = max_port
        self._reservations = reservations

    @property
    def reservations(self) -> PortReservations | None:
        return self._reservations

    async def allocate(self, *, exclude: set[int] | None = None) -> int:
        """Return the lowest free port.

        ``exclude`` lists ports the caller already saw rejected by the
        runtime during this request.

        Raises:
            NoCapacityError: When every port in the range is taken.
        """
        if self._reservations is None:
            return await self._scan(exclude or set())

        async with self._reservations.lock:
            taken = (exclude or set()) | self._reservations.held()
            port = await self._scan(taken)
            self._reservations.claim(port)
            return port

    def release(self, port: int) -> None:
        """Drop an in-process reservation (no-op without reservations)."""
        if self._reservations is not None:
            self._reservations.release(port)

    async def _scan(self, taken: set[int]) -> int:
        recorded = await self._store.list_ports_in_use(ACTIVE_STATUSES)
        bound = await self._lifecycle.bound_host_ports()

        for port in range(self.min_port, self.max_port + 1):
            if port in taken or port in recorded:
                continue
            if port in bound:
                logger.debug("Port %d has no active record but is bound on the host", port)
                continue
            logger.info("Allocated port: %d", port)
            return port

        raise NoCapacityError(self.min_port, self.max_port)
