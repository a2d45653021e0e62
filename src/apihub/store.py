"""Instance record persistence.

:class:`RecordStore` defines the async storage protocol the provisioning
core talks to.  :class:`InMemoryRecordStore` provides a dict-based
implementation suitable for testing and single-process deployments;
:class:`JsonFileRecordStore` persists the same rows to a JSON file so the
CLI keeps state between invocations.

Both enforce the uniqueness rules at the application layer: container
names and refs are unique across all rows, and no two active rows may hold
the same host port.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from apihub.errors import ConflictError, InvalidStatusTransition, NotFoundError, StoreError
from apihub.models import (
    ACTIVE_STATUSES,
    Instance,
    InstanceStatus,
    can_transition,
    utcnow,
)

_ROWS = TypeAdapter(list[Instance])


class RecordStore(Protocol):
    """Async persistence protocol for :class:`Instance` rows."""

    async def create_record(self, instance: Instance) -> str:
        """Insert a new row and return its id.

        Raises:
            ConflictError: On a duplicate id, container name or ref, or an
                active port clash.
        """
        ...

    async def get_record(self, instance_id: str, owner_id: str) -> Instance | None:
        """Return the row if it exists *and* belongs to ``owner_id``."""
        ...

    async def list_records(self, owner_id: str, active_only: bool = True) -> list[Instance]:
        """Rows of one owner, newest first; ``active_only`` hides stopped rows."""
        ...

    async def update_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        stopped_at: datetime | None = None,
    ) -> Instance:
        """Move a row to ``status`` and return the updated copy."""
        ...

    async def list_ports_in_use(self, statuses: Iterable[InstanceStatus] = ACTIVE_STATUSES) -> set[int]:
        ...

    async def list_all_container_refs(
        self, statuses: Iterable[InstanceStatus] | None = None
    ) -> set[str]:
        """Non-empty container refs, optionally limited to rows in ``statuses``."""
        ...

    async def list_container_names(self) -> set[str]:
        ...

    async def list_stuck(self, status: InstanceStatus, before: datetime) -> list[Instance]:
        """Rows in ``status`` whose last update happened before ``before``."""
        ...


class InMemoryRecordStore:
    """Dict-backed :class:`RecordStore` implementation.

    Rows are kept as validated copies so that callers never share mutable
    state with the store (mimicking a real persistence layer).
    """

    def __init__(self) -> None:
        self._rows: dict[str, Instance] = {}
        self._lock = asyncio.Lock()

    async def create_record(self, instance: Instance) -> str:
        async with self._lock:
            await self._load()
            self._check_unique(instance)
            self._rows[instance.id] = instance.model_copy(deep=True)
            await self._flush()
        return instance.id

    async def get_record(self, instance_id: str, owner_id: str) -> Instance | None:
        async with self._lock:
            await self._load()
            row = self._rows.get(instance_id)
        if row is None or row.owner_id != owner_id:
            return None
        return row.model_copy(deep=True)

    async def list_records(self, owner_id: str, active_only: bool = True) -> list[Instance]:
        async with self._lock:
            await self._load()
            rows = [
                r.model_copy(deep=True)
                for r in self._rows.values()
                if r.owner_id == owner_id
                and not (active_only and r.status == InstanceStatus.STOPPED)
            ]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows

    async def update_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        stopped_at: datetime | None = None,
    ) -> Instance:
        async with self._lock:
            await self._load()
            row = self._rows.get(instance_id)
            if row is None:
                raise NotFoundError(instance_id)
            if not can_transition(row.status, status):
                raise InvalidStatusTransition(row.status.value, status.value)
            now = utcnow()
            update: dict[str, object] = {"status": status, "updated_at": now}
            if status == InstanceStatus.STOPPED:
                update["stopped_at"] = stopped_at or now
            elif stopped_at is not None:
                update["stopped_at"] = stopped_at
            updated = row.model_copy(update=update)
            self._rows[instance_id] = updated
            await self._flush()
        return updated.model_copy(deep=True)

    async def list_ports_in_use(self, statuses: Iterable[InstanceStatus] = ACTIVE_STATUSES) -> set[int]:
        wanted = set(statuses)
        async with self._lock:
            await self._load()
            return {r.port for r in self._rows.values() if r.status in wanted}

    async def list_all_container_refs(
        self, statuses: Iterable[InstanceStatus] | None = None
    ) -> set[str]:
        wanted = set(statuses) if statuses is not None else None
        async with self._lock:
            await self._load()
            return {
                r.container_ref
                for r in self._rows.values()
                if r.container_ref and (wanted is None or r.status in wanted)
            }

    async def list_container_names(self) -> set[str]:
        async with self._lock:
            await self._load()
            return {r.container_name for r in self._rows.values()}

    async def list_stuck(self, status: InstanceStatus, before: datetime) -> list[Instance]:
        async with self._lock:
            await self._load()
            return [
                r.model_copy(deep=True)
                for r in self._rows.values()
                if r.status == status and r.updated_at < before
            ]

    def _check_unique(self, instance: Instance) -> None:
        if instance.id in self._rows:
            raise ConflictError("instance id", instance.id)
        for row in self._rows.values():
            if row.container_name == instance.container_name:
                raise ConflictError("name", instance.container_name)
            if instance.container_ref and row.container_ref == instance.container_ref:
                raise ConflictError("container_ref", instance.container_ref)
            if instance.is_active and row.is_active and row.port == instance.port:
                raise ConflictError("port", instance.port)

    # Persistence hooks; the in-memory store keeps everything in ``_rows``.

    async def _load(self) -> None:
        return None

    async def _flush(self) -> None:
        return None


class JsonFileRecordStore(InMemoryRecordStore):
    """:class:`RecordStore` persisted as a JSON array in a single file.

    The file is re-read before every operation so that separate processes
    (e.g. two CLI invocations) observe each other's writes.  It is not a
    substitute for a database under concurrent writers.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def _load(self) -> None:
        try:
            raw = await asyncio.to_thread(self._path.read_bytes)
        except FileNotFoundError:
            self._rows = {}
            return
        except OSError as exc:
            raise StoreError(f"Cannot read {self._path}: {exc}") from exc

        if not raw.strip():
            self._rows = {}
            return
        try:
            rows = _ROWS.validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Corrupt record file {self._path}: {exc}") from exc
        self._rows = {r.id: r for r in rows}

    async def _flush(self) -> None:
        payload = json.dumps(
            [r.model_dump(mode="json") for r in self._rows.values()],
            indent=2,
        )
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            await asyncio.to_thread(self._path.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(tmp.write_text, payload, encoding="utf-8")
            await asyncio.to_thread(tmp.replace, self._path)
        except OSError as exc:
            raise StoreError(f"Cannot write {self._path}: {exc}") from exc
