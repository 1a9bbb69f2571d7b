"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The dual-tier store combines a local cache with Google Sheets, but every
tier is swappable.
"""

from recurring_items.services.storage.interface import (
    AuditStorageInterface,
    LedgerInterface,
    LocalCacheError,
    LocalCacheInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
    StorageError,
)
from recurring_items.services.storage.dual_tier import DualTierStore, WriteAck
from recurring_items.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)
from recurring_items.services.storage.local_cache import JsonFileCache, MemoryCache
from recurring_items.services.storage.memory import InMemoryAuditStorage, InMemoryRemoteStore
from recurring_items.services.storage.outbox import Outbox, OutboxEntry, OutboxOp

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerInterface",
    "LocalCacheInterface",
    "RemoteStoreInterface",
    # Exceptions
    "LocalCacheError",
    "RemoteUnavailableError",
    "StorageError",
    # Dual-tier store
    "DualTierStore",
    "Outbox",
    "OutboxEntry",
    "OutboxOp",
    "WriteAck",
    # Local tier
    "JsonFileCache",
    "MemoryCache",
    # Remote tiers
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryRemoteStore",
]
