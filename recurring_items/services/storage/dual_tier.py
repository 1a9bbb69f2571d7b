"""
Dual-Tier Store

DESIGN DECISION: Every document lives in two tiers:
- A local cache, always available, written synchronously first
- A remote store, authoritative when reachable, written best-effort

Read policy:
1. Offline: serve the local copy (or None)
2. Online: deliver queued writes for the key, then
   - a still-undelivered local write wins over the remote copy
   - otherwise the remote copy refreshes the cache
   - a remote "absent" drops the stale local copy
3. A failing remote read degrades to the local copy

Write policy:
1. Local write must succeed (LocalCacheError otherwise)
2. Remote write is attempted when reachable, with retries
3. A failed or skipped remote write goes to the outbox; never dropped

Every collection is scoped to the authenticated user.
"""

from typing import Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_items.config import SyncSettings, get_settings
from recurring_items.exceptions import AuthenticationRequiredError
from recurring_items.models.template import PLACEHOLDER_PREFIX
from recurring_items.services.storage.interface import (
    LocalCacheError,
    LocalCacheInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
)
from recurring_items.services.storage.outbox import (
    OUTBOX_COLLECTION,
    Outbox,
    OutboxEntry,
    OutboxOp,
    outbox_key,
)


logger = structlog.get_logger(__name__)


class WriteAck(BaseModel):
    """Outcome of a write. The local tier always succeeded if this exists."""

    collection: str
    key: str
    remote_synced: bool
    queued: bool


class DualTierStore:
    """
    Key/value document store over a local cache and an optional remote.

    A remote of None means the store is permanently offline: every
    write is queued and every read is served locally.
    """

    def __init__(
        self,
        cache: LocalCacheInterface,
        remote: Optional[RemoteStoreInterface],
        user_id: Optional[str],
        sync_settings: Optional[SyncSettings] = None,
        audit_logger=None,
    ):
        if not user_id or not str(user_id).strip():
            raise AuthenticationRequiredError("A user id is required to open the store")

        self._cache = cache
        self._remote = remote
        self._user_id = str(user_id).strip()
        self._settings = sync_settings or get_settings().sync
        self._audit = audit_logger
        self._outbox = Outbox(
            cache,
            collection=self._scoped(OUTBOX_COLLECTION),
            backoff_base_seconds=self._settings.backoff_base_seconds,
            backoff_max_seconds=self._settings.backoff_max_seconds,
        )

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def cache(self) -> LocalCacheInterface:
        return self._cache

    @property
    def outbox(self) -> Outbox:
        return self._outbox

    def _scoped(self, collection: str) -> str:
        return f"{self._user_id}/{collection}"

    async def is_online(self) -> bool:
        if self._remote is None:
            return False
        try:
            return await self._remote.is_reachable()
        except Exception as e:
            logger.warning("remote_reachability_check_failed", error=str(e))
            return False

    async def _call_remote(self, fn: Callable[..., Awaitable], *args):
        """Run one remote call with in-call retries."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self._settings.retry_wait_min_seconds,
                max=self._settings.retry_wait_max_seconds,
            ),
            retry=retry_if_exception_type(RemoteUnavailableError),
            reraise=True,
        ):
            with attempt:
                result = await fn(*args)
        return result

    # =========================================================================
    # READS
    # =========================================================================

    async def read(self, collection: str, key: str) -> Optional[dict]:
        """Fetch a document following the read policy above."""
        scoped = self._scoped(collection)
        local = self._cache.get(scoped, key)

        if not await self.is_online():
            return local

        pending = self._outbox.pending_for(scoped, key)
        if pending is not None:
            await self._deliver([pending])
            if self._outbox.pending_for(scoped, key) is not None:
                return local

        try:
            remote_value = await self._call_remote(self._remote.get, scoped, key)
        except Exception as e:
            logger.warning("remote_read_failed", collection=scoped, key=key, error=str(e))
            return local

        try:
            if remote_value is None:
                if local is not None:
                    self._cache.delete(scoped, key)
                return None
            self._cache.set(scoped, key, remote_value)
        except LocalCacheError as e:
            logger.warning("local_cache_refresh_failed", collection=scoped, key=key, error=str(e))
        return remote_value

    async def read_all(self, collection: str) -> dict[str, dict]:
        """Every document of a collection, merged across tiers."""
        scoped = self._scoped(collection)
        local = self._cache.items(scoped)

        if not await self.is_online():
            return local

        await self._deliver(self._outbox.entries(scoped))

        try:
            remote_values = await self._call_remote(self._remote.list_collection, scoped)
        except Exception as e:
            logger.warning("remote_list_failed", collection=scoped, error=str(e))
            return local

        merged = dict(remote_values)
        for entry in self._outbox.entries(scoped):
            if entry.op == OutboxOp.SET:
                merged[entry.key] = local.get(entry.key, entry.payload)
            else:
                merged.pop(entry.key, None)

        try:
            self._cache.replace_collection(scoped, merged)
        except LocalCacheError as e:
            logger.warning("local_cache_refresh_failed", collection=scoped, error=str(e))
        return merged

    # =========================================================================
    # WRITES
    # =========================================================================

    async def write(self, collection: str, key: str, value: dict) -> WriteAck:
        """
        Persist a document.

        Raises:
            LocalCacheError: If the local tier could not store it
        """
        scoped = self._scoped(collection)
        self._cache.set(scoped, key, value)
        return await self._push(OutboxOp.SET, scoped, key, value)

    async def delete(self, collection: str, key: str) -> WriteAck:
        scoped = self._scoped(collection)
        self._cache.delete(scoped, key)
        return await self._push(OutboxOp.DELETE, scoped, key, None)

    def invalidate(self, collection: str, key: str) -> bool:
        """Forget the local copy only; the next online read refetches it."""
        return self._cache.delete(self._scoped(collection), key)

    async def _push(self, op: OutboxOp, scoped: str, key: str, value: Optional[dict]) -> WriteAck:
        if not await self.is_online():
            self._outbox.enqueue(op, scoped, key, value, error="offline")
            logger.warning("remote_write_deferred", collection=scoped, key=key, reason="offline")
            return WriteAck(collection=scoped, key=key, remote_synced=False, queued=True)

        # Older queued writes go out first; one for this same key is superseded
        backlog = [e for e in self._outbox.due_entries() if e.target != outbox_key(scoped, key)]
        if backlog:
            await self._deliver(backlog)

        try:
            if op == OutboxOp.SET:
                await self._call_remote(self._remote.set, scoped, key, value)
            else:
                await self._call_remote(self._remote.delete, scoped, key)
        except Exception as e:
            self._outbox.enqueue(op, scoped, key, value, error=str(e))
            logger.warning("remote_write_deferred", collection=scoped, key=key, error=str(e))
            if self._audit is not None:
                await self._audit.log_remote_write_deferred(scoped, key, str(e))
            return WriteAck(collection=scoped, key=key, remote_synced=False, queued=True)

        # Anything still queued for this key is older than what we just sent
        self._outbox.discard(scoped, key)
        return WriteAck(collection=scoped, key=key, remote_synced=True, queued=False)

    # =========================================================================
    # IDS AND OUTBOX
    # =========================================================================

    async def new_id(self, collection: str) -> str:
        """Remote-canonical id when online, a local placeholder otherwise."""
        if await self.is_online():
            try:
                return self._remote.allocate_id(self._scoped(collection))
            except Exception as e:
                logger.warning("remote_id_allocation_failed", collection=collection, error=str(e))
        return f"{PLACEHOLDER_PREFIX}{uuid4().hex}"

    async def flush_outbox(self) -> int:
        """Deliver every due outbox entry. Returns how many were delivered."""
        if not await self.is_online():
            return 0
        return await self._deliver(self._outbox.due_entries())

    async def _deliver(self, entries: list[OutboxEntry]) -> int:
        delivered = 0
        for entry in entries:
            try:
                if entry.op == OutboxOp.SET:
                    await self._call_remote(self._remote.set, entry.collection, entry.key, entry.payload)
                else:
                    await self._call_remote(self._remote.delete, entry.collection, entry.key)
            except Exception as e:
                updated = self._outbox.mark_failed(entry, str(e))
                logger.warning(
                    "outbox_delivery_failed",
                    collection=entry.collection,
                    key=entry.key,
                    attempts=updated.attempts,
                    error=str(e),
                )
                if updated.attempts >= self._settings.outbox_alert_attempts:
                    logger.error(
                        "outbox_entry_stuck",
                        collection=entry.collection,
                        key=entry.key,
                        attempts=updated.attempts,
                    )
                    if self._audit is not None:
                        await self._audit.log_error(
                            error_type="outbox_entry_stuck",
                            error_message=str(e),
                            details={
                                "collection": entry.collection,
                                "key": entry.key,
                                "attempts": updated.attempts,
                            },
                        )
                continue
            self._outbox.remove(entry)
            delivered += 1

        if delivered:
            logger.info("outbox_flushed", delivered=delivered, remaining=len(self._outbox))
        return delivered
