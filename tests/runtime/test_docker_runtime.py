"""Tests for DockerCliRuntime (subprocess calls are mocked)."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from apihub.errors import (
    ConflictError,
    ContainerMissingError,
    ContainerRuntimeError,
    RuntimeUnavailableError,
)
from apihub.models import ContainerSpec, HealthCheck
from apihub.runtime.base import ContainerRuntime
from apihub.runtime.docker_runtime import DockerCliRuntime, _DockerOutput


def _spec(**overrides: object) -> ContainerSpec:
    fields: dict[str, object] = {
        "name": "api-instance-u1-1700000000000",
        "image": "timfewi/dummy-api:latest",
        "container_port": 3000,
        "host_port": 3001,
        "env": {"NODE_ENV": "production", "PORT": "3000"},
        "labels": {"api-hub.user-id": "u1", "api-hub.service": "dummy-api"},
        "healthcheck": HealthCheck(
            test=["CMD", "curl", "-f", "http://localhost:3000/health"],
            interval=30,
            timeout=10,
            retries=3,
            start_period=30,
        ),
    }
    fields.update(overrides)
    return ContainerSpec(**fields)  # type: ignore[arg-type]


def _failure(detail: str) -> ContainerRuntimeError:
    return ContainerRuntimeError(detail)


class TestProtocol:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(DockerCliRuntime(), ContainerRuntime)


class TestCreate:
    async def test_command_and_ref(self) -> None:
        runtime = DockerCliRuntime()
        mock = AsyncMock(return_value=_DockerOutput(stdout="abc123def456\n"))
        with patch.object(runtime, "_run_docker", mock):
            ref = await runtime.create(_spec())

        assert ref == "abc123def456"
        cmd = mock.call_args.args[0]
        assert cmd[:2] == ["docker", "create"]
        assert cmd[cmd.index("--name") + 1] == "api-instance-u1-1700000000000"
        assert cmd[cmd.index("--publish") + 1] == "3001:3000/tcp"
        assert cmd[cmd.index("--memory") + 1] == "256m"
        assert cmd[cmd.index("--cpu-shares") + 1] == "512"
        assert cmd[cmd.index("--restart") + 1] == "unless-stopped"
        assert "api-hub.service=dummy-api" in cmd
        assert "NODE_ENV=production" in cmd
        assert cmd[cmd.index("--health-cmd") + 1] == "curl -f http://localhost:3000/health"
        assert cmd[cmd.index("--health-interval") + 1] == "30s"
        assert cmd[cmd.index("--health-retries") + 1] == "3"
        assert cmd[-1] == "timfewi/dummy-api:latest"

    async def test_without_healthcheck(self) -> None:
        runtime = DockerCliRuntime()
        mock = AsyncMock(return_value=_DockerOutput(stdout="abc"))
        with patch.object(runtime, "_run_docker", mock):
            await runtime.create(_spec(healthcheck=None))
        assert "--health-cmd" not in mock.call_args.args[0]

    async def test_custom_binary(self) -> None:
        runtime = DockerCliRuntime(docker_binary="podman")
        mock = AsyncMock(return_value=_DockerOutput(stdout="abc"))
        with patch.object(runtime, "_run_docker", mock):
            await runtime.create(_spec())
        assert mock.call_args.args[0][0] == "podman"

    async def test_port_taken_is_conflict(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Bind for 0.0.0.0:3001 failed: port is already allocated")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ConflictError) as exc_info,
        ):
            await runtime.create(_spec())
        assert exc_info.value.kind == "port"
        assert exc_info.value.value == 3001

    async def test_name_taken_is_conflict(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure(
            'Conflict. The container name "/api-instance-u1-1700000000000" is already in use'
        )
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ConflictError) as exc_info,
        ):
            await runtime.create(_spec())
        assert exc_info.value.kind == "name"

    async def test_other_failure_propagates(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Unable to find image 'nope:latest' locally")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ContainerRuntimeError, match="Unable to find image"),
        ):
            await runtime.create(_spec())

    async def test_empty_output(self) -> None:
        runtime = DockerCliRuntime()
        with (
            patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput())),
            pytest.raises(ContainerRuntimeError, match="returned no id"),
        ):
            await runtime.create(_spec())


class TestStartStopRemove:
    async def test_start_port_conflict(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure(
            "driver failed programming external connectivity: Bind for 0.0.0.0:3005 failed: "
            "port is already allocated"
        )
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ConflictError) as exc_info,
        ):
            await runtime.start("abc")
        assert exc_info.value.value == 3005

    async def test_start_missing(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Error response from daemon: No such container: abc")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ContainerMissingError),
        ):
            await runtime.start("abc")

    async def test_stop_uses_grace(self) -> None:
        runtime = DockerCliRuntime(call_timeout=5)
        mock = AsyncMock(return_value=_DockerOutput())
        with patch.object(runtime, "_run_docker", mock):
            await runtime.stop("abc", 10)
        assert mock.call_args.args[0] == ["docker", "stop", "--time", "10", "abc"]
        assert mock.call_args.kwargs["timeout"] == 15

    async def test_remove_is_forced(self) -> None:
        runtime = DockerCliRuntime()
        mock = AsyncMock(return_value=_DockerOutput())
        with patch.object(runtime, "_run_docker", mock):
            await runtime.remove("abc")
        assert mock.call_args.args[0] == ["docker", "rm", "--force", "abc"]

    async def test_remove_missing(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Error: No such container: abc")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ContainerMissingError),
        ):
            await runtime.remove("abc")

    async def test_remove_other_failure(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("permission denied")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ContainerRuntimeError) as exc_info,
        ):
            await runtime.remove("abc")
        assert not isinstance(exc_info.value, ContainerMissingError)


class TestInspect:
    async def test_running_with_port(self) -> None:
        runtime = DockerCliRuntime()
        payload = json.dumps([{
            "State": {"Running": True, "Status": "running"},
            "NetworkSettings": {"Ports": {"3000/tcp": [{"HostIp": "0.0.0.0", "HostPort": "3001"}]}},
        }])
        with patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput(stdout=payload))):
            state = await runtime.inspect("abc")
        assert state.running is True
        assert state.raw_state == "running"
        assert state.host_port == 3001

    async def test_exited_without_ports(self) -> None:
        runtime = DockerCliRuntime()
        payload = json.dumps([{"State": {"Running": False, "Status": "exited"}}])
        with patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput(stdout=payload))):
            state = await runtime.inspect("abc")
        assert state.running is False
        assert state.host_port is None

    async def test_missing(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Error: No such object: abc")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(ContainerMissingError),
        ):
            await runtime.inspect("abc")

    async def test_empty_array(self) -> None:
        runtime = DockerCliRuntime()
        with (
            patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput(stdout="[]"))),
            pytest.raises(ContainerMissingError),
        ):
            await runtime.inspect("abc")


class TestListing:
    async def test_list_by_label(self) -> None:
        runtime = DockerCliRuntime()
        rows = "\n".join([
            json.dumps({
                "ID": "abc",
                "Names": "api-instance-u1-1",
                "Labels": "api-hub.service=dummy-api,api-hub.user-id=u1",
                "CreatedAt": "2025-07-27 13:27:05 +0000 UTC",
            }),
            "garbage",
        ])
        mock = AsyncMock(return_value=_DockerOutput(stdout=rows))
        with patch.object(runtime, "_run_docker", mock):
            summaries = await runtime.list_by_label("api-hub.service=dummy-api")

        assert "label=api-hub.service=dummy-api" in mock.call_args.args[0]
        assert len(summaries) == 1
        summary = summaries[0]
        assert summary.container_ref == "abc"
        assert summary.labels["api-hub.user-id"] == "u1"
        assert summary.created_at == datetime(2025, 7, 27, 13, 27, 5, tzinfo=UTC)

    async def test_list_host_ports(self) -> None:
        runtime = DockerCliRuntime()
        rows = "\n".join([
            json.dumps({"Ports": "0.0.0.0:3001->3000/tcp, :::3001->3000/tcp"}),
            json.dumps({"Ports": "0.0.0.0:8080->80/tcp"}),
            json.dumps({"Ports": ""}),
        ])
        with patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput(stdout=rows))):
            assert await runtime.list_host_ports() == {3001, 8080}

    async def test_logs_merge_streams(self) -> None:
        runtime = DockerCliRuntime()
        mock = AsyncMock(return_value=_DockerOutput(stdout="out line", stderr="err line"))
        with patch.object(runtime, "_run_docker", mock):
            text = await runtime.logs("abc", 50)
        assert text == "out line\nerr line"
        assert mock.call_args.args[0] == ["docker", "logs", "--timestamps", "--tail", "50", "abc"]
        assert mock.call_args.kwargs["capture_stderr"] is True


class TestPing:
    async def test_ping_ok(self) -> None:
        runtime = DockerCliRuntime()
        with patch.object(runtime, "_run_docker", AsyncMock(return_value=_DockerOutput(stdout="27.0.1"))):
            await runtime.ping()

    async def test_ping_failure(self) -> None:
        runtime = DockerCliRuntime()
        err = _failure("Cannot connect to the Docker daemon")
        with (
            patch.object(runtime, "_run_docker", AsyncMock(side_effect=err)),
            pytest.raises(RuntimeUnavailableError),
        ):
            await runtime.ping()


class TestRunDocker:
    async def test_missing_binary(self) -> None:
        runtime = DockerCliRuntime(docker_binary="docker-does-not-exist")
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("nope"))),
            pytest.raises(RuntimeUnavailableError),
        ):
            await runtime.ping()

    async def test_nonzero_exit(self) -> None:
        runtime = DockerCliRuntime()
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"", b"boom"))
        proc.returncode = 1
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)),
            pytest.raises(ContainerRuntimeError, match=r"docker rm failed \(rc=1\): boom"),
        ):
            await runtime.remove("abc")

    async def test_timeout_kills_process(self) -> None:
        runtime = DockerCliRuntime(call_timeout=0.01)

        async def _hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc = MagicMock()
        proc.communicate = _hang
        proc.wait = AsyncMock(return_value=-9)
        with (
            patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)),
            pytest.raises(ContainerRuntimeError, match="timed out"),
        ):
            await runtime.inspect("abc")
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    async def test_success_output(self) -> None:
        runtime = DockerCliRuntime()
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"abc123\n", b""))
        proc.returncode = 0
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            assert await runtime.create(_spec()) == "abc123"
