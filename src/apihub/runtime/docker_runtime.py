"""DockerCliRuntime — drives long-lived sandbox containers via the docker CLI.

Uses the ``docker`` CLI via subprocess (no docker-py dependency).  Every
call is bounded by ``call_timeout``; a call that overruns is killed and
reported as a :class:`~apihub.errors.ContainerRuntimeError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any

from apihub.errors import (
    ConflictError,
    ContainerMissingError,
    ContainerRuntimeError,
    RuntimeUnavailableError,
)
from apihub.models import ContainerSpec, ContainerState, ContainerSummary

logger = logging.getLogger(__name__)

_PUBLISHED_PORT = re.compile(r":(\d+)->\d+/(?:tcp|udp)")
_PORT_TAKEN = re.compile(r"port is already allocated|address already in use", re.IGNORECASE)
_NAME_TAKEN = re.compile(r'container name "/?([^"]+)" is already in use', re.IGNORECASE)
_NO_SUCH = re.compile(r"no such (container|object)", re.IGNORECASE)


class DockerCliRuntime:
    """Docker host backend.

    Satisfies the :class:`~apihub.runtime.base.ContainerRuntime` protocol.
    """

    def __init__(
        self,
        *,
        container_port: int = 3000,
        call_timeout: float = 30.0,
        docker_binary: str = "docker",
    ) -> None:
        self._container_port = container_port
        self._call_timeout = call_timeout
        self._docker = docker_binary

    async def create(self, spec: ContainerSpec) -> str:
        try:
            out = await self._run_docker(self._build_create_command(spec))
        except ContainerRuntimeError as exc:
            if _PORT_TAKEN.search(exc.detail):
                raise ConflictError("port", spec.host_port) from exc
            if _NAME_TAKEN.search(exc.detail):
                raise ConflictError("name", spec.name) from exc
            raise
        ref = out.stdout.splitlines()[-1].strip() if out.stdout else ""
        if not ref:
            raise ContainerRuntimeError(f"docker create returned no id for {spec.name}")
        return ref

    async def start(self, ref: str) -> None:
        try:
            await self._run_docker([self._docker, "start", ref])
        except ContainerRuntimeError as exc:
            if _PORT_TAKEN.search(exc.detail):
                raise ConflictError("port", _bound_port(exc.detail)) from exc
            _raise_if_missing(exc, ref)
            raise

    async def stop(self, ref: str, grace_seconds: int) -> None:
        try:
            await self._run_docker(
                [self._docker, "stop", "--time", str(grace_seconds), ref],
                timeout=self._call_timeout + grace_seconds,
            )
        except ContainerRuntimeError as exc:
            _raise_if_missing(exc, ref)
            raise

    async def remove(self, ref: str) -> None:
        try:
            await self._run_docker([self._docker, "rm", "--force", ref])
        except ContainerRuntimeError as exc:
            _raise_if_missing(exc, ref)
            raise

    async def inspect(self, ref: str) -> ContainerState:
        try:
            out = await self._run_docker([self._docker, "inspect", "--type", "container", ref])
        except ContainerRuntimeError as exc:
            _raise_if_missing(exc, ref)
            raise

        try:
            data = json.loads(out.stdout)
        except json.JSONDecodeError as exc:
            raise ContainerRuntimeError(f"unparseable inspect output for {ref}") from exc
        if not data:
            raise ContainerMissingError(ref)
        return self._parse_state(data[0])

    async def list_by_label(self, label: str) -> list[ContainerSummary]:
        out = await self._run_docker(
            [self._docker, "ps", "--all", "--no-trunc", "--filter", f"label={label}", "--format", "{{json .}}"]
        )
        return [_parse_summary(row) for row in _json_lines(out.stdout)]

    async def list_host_ports(self) -> set[int]:
        out = await self._run_docker([self._docker, "ps", "--all", "--format", "{{json .}}"])
        ports: set[int] = set()
        for row in _json_lines(out.stdout):
            ports.update(int(p) for p in _PUBLISHED_PORT.findall(row.get("Ports", "")))
        return ports

    async def logs(self, ref: str, tail: int) -> str:
        try:
            out = await self._run_docker(
                [self._docker, "logs", "--timestamps", "--tail", str(tail), ref],
                capture_stderr=True,
            )
        except ContainerRuntimeError as exc:
            _raise_if_missing(exc, ref)
            raise
        return "\n".join(part for part in (out.stdout, out.stderr) if part)

    async def ping(self) -> None:
        try:
            await self._run_docker([self._docker, "version", "--format", "{{.Server.Version}}"])
        except ContainerRuntimeError as exc:
            raise RuntimeUnavailableError(exc.detail) from exc

    def _build_create_command(self, spec: ContainerSpec) -> list[str]:
        """Build the ``docker create`` command with limits, probe and labels."""
        cmd: list[str] = [
            self._docker, "create",
            "--name", spec.name,
            "--publish", f"{spec.host_port}:{spec.container_port}/tcp",
            "--memory", spec.memory_limit,
            "--cpu-shares", str(spec.cpu_shares),
            "--restart", spec.restart_policy,
        ]

        for key, value in spec.labels.items():
            cmd.extend(["--label", f"{key}={value}"])

        for key, value in spec.env.items():
            cmd.extend(["--env", f"{key}={value}"])

        if spec.healthcheck is not None:
            hc = spec.healthcheck
            test = hc.test[1:] if hc.test and hc.test[0] in {"CMD", "CMD-SHELL"} else hc.test
            cmd.extend([
                "--health-cmd", " ".join(test),
                "--health-interval", _duration(hc.interval),
                "--health-timeout", _duration(hc.timeout),
                "--health-retries", str(hc.retries),
                "--health-start-period", _duration(hc.start_period),
            ])

        cmd.append(spec.image)
        return cmd

    def _parse_state(self, data: dict[str, Any]) -> ContainerState:
        state = data.get("State") or {}
        ports = (data.get("NetworkSettings") or {}).get("Ports") or {}
        bindings = ports.get(f"{self._container_port}/tcp") or []
        host_port: int | None = None
        if bindings and bindings[0].get("HostPort"):
            host_port = int(bindings[0]["HostPort"])
        return ContainerState(
            running=bool(state.get("Running")),
            raw_state=str(state.get("Status", "unknown")),
            host_port=host_port,
        )

    async def _run_docker(
        self,
        cmd: list[str],
        *,
        capture_stderr: bool = False,
        timeout: float | None = None,
    ) -> _DockerOutput:
        """Run a docker CLI command and return its output."""
        logger.debug("docker call: %s", " ".join(cmd[1:3]))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RuntimeUnavailableError(f"Failed to run docker: {exc}") from exc

        limit = timeout if timeout is not None else self._call_timeout
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ContainerRuntimeError(f"docker {cmd[1]} timed out after {limit}s") from exc

        stdout = stdout_bytes.decode(errors="replace").strip() if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace").strip() if stderr_bytes else ""

        if proc.returncode != 0:
            raise ContainerRuntimeError(f"docker {cmd[1]} failed (rc={proc.returncode}): {stderr or stdout}")

        return _DockerOutput(
            stdout=stdout,
            stderr=stderr if capture_stderr else "",
        )


class _DockerOutput:
    """Simple container for docker CLI output."""

    __slots__ = ("stdout", "stderr")

    def __init__(self, stdout: str = "", stderr: str = "") -> None:
        self.stdout = stdout
        self.stderr = stderr


def _duration(seconds: float) -> str:
    return f"{seconds:g}s"


def _bound_port(detail: str) -> int | str:
    match = re.search(r":(\d+) failed", detail)
    return int(match.group(1)) if match else "unknown"


def _json_lines(text: str) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning("Skipping unparseable docker ps row: %s", line)
    return rows


def _parse_labels(raw: str) -> dict[str, str]:
    labels: dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if sep:
            labels[key.strip()] = value
    return labels


def _parse_created(raw: str) -> datetime | None:
    # docker ps prints e.g. "2025-07-27 13:27:05 +0000 UTC"
    parts = raw.split(" ")
    if len(parts) < 3:
        return None
    try:
        return datetime.strptime(" ".join(parts[:3]), "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None


def _parse_summary(row: dict[str, Any]) -> ContainerSummary:
    return ContainerSummary(
        container_ref=row.get("ID", ""),
        name=row.get("Names", ""),
        labels=_parse_labels(row.get("Labels", "")),
        created_at=_parse_created(row.get("CreatedAt", "")),
    )


def _raise_if_missing(exc: ContainerRuntimeError, ref: str) -> None:
    if _NO_SUCH.search(exc.detail):
        raise ContainerMissingError(ref) from exc
