"""
Remote Write Outbox

DESIGN DECISION: A remote write that could not be delivered is never
dropped. It is recorded in the local cache and retried later:
1. Within one flush, tenacity retries with exponential waits
2. Across flushes, each entry waits an exponentially growing backoff
3. A newer write to the same key replaces the queued one

The outbox lives in the local cache itself, so it survives restarts.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from recurring_items.models.period import utc_now
from recurring_items.services.storage.interface import LocalCacheInterface


logger = structlog.get_logger(__name__)


OUTBOX_COLLECTION = "_outbox"


class OutboxOp(str, Enum):
    SET = "set"
    DELETE = "delete"


class OutboxEntry(BaseModel):
    """One undelivered remote write."""

    entry_id: str = Field(default_factory=lambda: uuid4().hex)
    op: OutboxOp
    collection: str
    key: str
    payload: Optional[dict] = None
    attempts: int = Field(default=0, ge=0)
    enqueued_at: datetime = Field(default_factory=utc_now)
    next_attempt_at: datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None

    @property
    def target(self) -> str:
        return outbox_key(self.collection, self.key)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return self.next_attempt_at <= (now or utc_now())


def outbox_key(collection: str, key: str) -> str:
    return f"{collection}|{key}"


class Outbox:
    """
    Durable queue of remote writes, keyed by target.

    Keying by (collection, key) is what makes a newer write supersede
    an older one.
    """

    def __init__(
        self,
        cache: LocalCacheInterface,
        collection: str = OUTBOX_COLLECTION,
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
    ):
        self._cache = cache
        self._collection = collection
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds

    def __len__(self) -> int:
        return len(self._cache.items(self._collection))

    def enqueue(
        self,
        op: OutboxOp,
        collection: str,
        key: str,
        payload: Optional[dict] = None,
        error: Optional[str] = None,
    ) -> OutboxEntry:
        entry = OutboxEntry(
            op=op,
            collection=collection,
            key=key,
            payload=payload,
            last_error=error,
        )
        superseded = self.pending_for(collection, key)
        if superseded is not None:
            logger.debug("outbox_entry_superseded", collection=collection, key=key,
                         entry_id=superseded.entry_id)
        self._cache.set(self._collection, entry.target, entry.model_dump(mode="json"))
        return entry

    def pending_for(self, collection: str, key: str) -> Optional[OutboxEntry]:
        raw = self._cache.get(self._collection, outbox_key(collection, key))
        return OutboxEntry.model_validate(raw) if raw else None

    def entries(self, collection: Optional[str] = None) -> list[OutboxEntry]:
        """Queued entries, oldest first, optionally for one collection."""
        entries = [OutboxEntry.model_validate(raw) for raw in self._cache.items(self._collection).values()]
        if collection is not None:
            entries = [entry for entry in entries if entry.collection == collection]
        return sorted(entries, key=lambda entry: entry.enqueued_at)

    def due_entries(self, now: Optional[datetime] = None) -> list[OutboxEntry]:
        now = now or utc_now()
        return [entry for entry in self.entries() if entry.is_due(now)]

    def backoff_for(self, attempts: int) -> timedelta:
        """Wait before the next flush after `attempts` failed ones."""
        if attempts <= 0:
            return timedelta(0)
        seconds = min(self._backoff_base * (2 ** (attempts - 1)), self._backoff_max)
        return timedelta(seconds=seconds)

    def mark_failed(self, entry: OutboxEntry, error: str) -> OutboxEntry:
        """Record a failed delivery and schedule the next one."""
        current = self.pending_for(entry.collection, entry.key)
        if current is None or current.entry_id != entry.entry_id:
            # Superseded while we were sending; the newer entry keeps its schedule
            return current or entry
        attempts = entry.attempts + 1
        updated = entry.model_copy(update={
            "attempts": attempts,
            "last_error": error,
            "next_attempt_at": utc_now() + self.backoff_for(attempts),
        })
        self._cache.set(self._collection, updated.target, updated.model_dump(mode="json"))
        return updated

    def remove(self, entry: OutboxEntry) -> bool:
        """Drop a delivered entry, unless a newer write replaced it meanwhile."""
        current = self.pending_for(entry.collection, entry.key)
        if current is None or current.entry_id != entry.entry_id:
            return False
        return self._cache.delete(self._collection, entry.target)

    def discard(self, collection: str, key: str) -> bool:
        """Drop whatever is queued for a key (a direct write made it stale)."""
        return self._cache.delete(self._collection, outbox_key(collection, key))
