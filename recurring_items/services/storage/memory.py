"""
In-Memory Remote Tier

Stands in for the hosted document store in tests and offline demos.
Reachability can be toggled and failures injected, which is how the
degraded paths of the dual-tier store are exercised.
"""

import copy
from typing import Optional
from uuid import uuid4

from recurring_items.models.audit import AuditEvent
from recurring_items.services.storage.interface import (
    AuditStorageInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
)


class InMemoryRemoteStore(RemoteStoreInterface):
    """
    Remote store backed by a dict.

    online=False makes it unreachable; fail_reads / fail_writes keep it
    "reachable" but make the calls themselves fail.
    """

    def __init__(self, online: bool = True):
        self.online = online
        self.fail_reads = False
        self.fail_writes = False
        self.write_calls = 0
        self._data: dict[str, dict[str, dict]] = {}

    def _guard(self, write: bool) -> None:
        if not self.online:
            raise RemoteUnavailableError("Remote store is offline")
        if write and self.fail_writes:
            raise RemoteUnavailableError("Injected remote write failure")
        if not write and self.fail_reads:
            raise RemoteUnavailableError("Injected remote read failure")

    async def is_reachable(self) -> bool:
        return self.online

    async def get(self, collection: str, key: str) -> Optional[dict]:
        self._guard(write=False)
        value = self._data.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, collection: str, key: str, value: dict) -> None:
        self._guard(write=True)
        self.write_calls += 1
        self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def delete(self, collection: str, key: str) -> bool:
        self._guard(write=True)
        self.write_calls += 1
        return self._data.get(collection, {}).pop(key, None) is not None

    async def list_collection(self, collection: str) -> dict[str, dict]:
        self._guard(write=False)
        return copy.deepcopy(self._data.get(collection, {}))

    def allocate_id(self, collection: str) -> str:
        return uuid4().hex

    def peek(self, collection: str, key: str) -> Optional[dict]:
        """Direct look at remote state, bypassing the online flag (tests)."""
        return copy.deepcopy(self._data.get(collection, {}).get(key))


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
