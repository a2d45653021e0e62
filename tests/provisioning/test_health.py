"""Tests for the HTTP health probe."""

from __future__ import annotations

import httpx

from apihub.provisioning.health import HealthProbe


def _transport(status: int, seen: list[str] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(str(request.url))
        return httpx.Response(status, json={"status": "ok"})

    return httpx.MockTransport(handler)


class TestHealthProbe:
    async def test_healthy(self) -> None:
        seen: list[str] = []
        probe = HealthProbe(transport=_transport(200, seen))
        assert await probe.check("http://localhost:3001/") is True
        assert seen == ["http://localhost:3001/health"]

    async def test_custom_path(self) -> None:
        seen: list[str] = []
        probe = HealthProbe(path="/status", transport=_transport(204, seen))
        assert await probe.check("http://localhost:3001") is True
        assert seen == ["http://localhost:3001/status"]

    async def test_server_error(self) -> None:
        probe = HealthProbe(transport=_transport(503))
        assert await probe.check("http://localhost:3001") is False

    async def test_connection_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        probe = HealthProbe(transport=httpx.MockTransport(handler))
        assert await probe.check("http://localhost:3001") is False
