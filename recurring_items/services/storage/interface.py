"""
Abstract Storage Interfaces

DESIGN DECISION: Every tier sits behind an abstract interface.
This allows us to:
1. Swap Google Sheets for another document store later
2. Use in-memory tiers for testing
3. Keep the dual-tier policy independent of any backend
4. Keep financial semantics out of the storage layer

Values are JSON-compatible dicts. The storage layer never looks inside them.
"""

from abc import ABC, abstractmethod
from typing import Optional

from recurring_items.models.audit import AuditEvent
from recurring_items.models.ledger import LedgerTransaction


class LocalCacheInterface(ABC):
    """
    The always-available local tier.

    Calls are synchronous: the cache lives on this device.
    """

    @abstractmethod
    def get(self, collection: str, key: str) -> Optional[dict]:
        """Return the cached value, or None if the key is absent."""
        pass

    @abstractmethod
    def set(self, collection: str, key: str, value: dict) -> None:
        """
        Store a value.

        Raises:
            LocalCacheError: If the value could not be persisted
        """
        pass

    @abstractmethod
    def delete(self, collection: str, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass

    @abstractmethod
    def items(self, collection: str) -> dict[str, dict]:
        """All cached values of a collection, keyed by key."""
        pass

    @abstractmethod
    def replace_collection(self, collection: str, values: dict[str, dict]) -> None:
        """Replace a whole collection in one write."""
        pass


class RemoteStoreInterface(ABC):
    """
    The authoritative remote tier.

    Only reachable when online. Callers must be ready for any call to fail.
    """

    @abstractmethod
    async def is_reachable(self) -> bool:
        """Cheap reachability signal. Never raises."""
        pass

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[dict]:
        """
        Fetch a value.

        Returns:
            The value, or None if the key does not exist remotely

        Raises:
            RemoteUnavailableError: If the remote could not be queried
        """
        pass

    @abstractmethod
    async def set(self, collection: str, key: str, value: dict) -> None:
        """Create or overwrite a value (last write wins)."""
        pass

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """Remove a value. Returns True if it existed."""
        pass

    @abstractmethod
    async def list_collection(self, collection: str) -> dict[str, dict]:
        """All values of a collection, keyed by key."""
        pass

    @abstractmethod
    def allocate_id(self, collection: str) -> str:
        """A fresh, remote-canonical identifier for a new record."""
        pass


class LedgerInterface(ABC):
    """
    The external store of real money movement.

    The engine creates entries on pay and deletes them on undo. Lookups
    are only used by the repair pass and by the legacy migration.
    """

    @abstractmethod
    async def create(self, transaction: LedgerTransaction) -> str:
        """Record a transaction and return its id."""
        pass

    @abstractmethod
    async def delete(self, transaction_id: str) -> bool:
        """Remove a transaction. Returns True if it existed."""
        pass

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[LedgerTransaction]:
        pass

    @abstractmethod
    async def find_by_item(self, item_id: str) -> list[LedgerTransaction]:
        """Entries tagged with a period item id, oldest first."""
        pass

    @abstractmethod
    async def list_transactions(self) -> list[LedgerTransaction]:
        """Every entry, oldest first."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class LocalCacheError(StorageError):
    """The local cache could not be read or written."""
    pass


class RemoteUnavailableError(StorageError):
    """Could not reach or use the remote backend."""
    pass
