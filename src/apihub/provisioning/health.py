"""HTTP reachability check against a sandbox's health endpoint."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class HealthProbe:
    """``GET <url><path>`` and report whether the sandbox answered 2xx."""

    def __init__(
        self,
        *,
        path: str = "/health",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._path = path
        self._timeout = timeout
        self._transport = transport

    async def check(self, url: str) -> bool:
        target = url.rstrip("/") + self._path
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.get(target)
            except httpx.HTTPError as exc:
                logger.info("Health probe %s failed: %s", target, exc)
                return False
        healthy = response.is_success
        if not healthy:
            logger.info("Health probe %s returned %d", target, response.status_code)
        return healthy
