"""Services package."""

from recurring_items.services.ledger import StoreLedger
from recurring_items.services.storage import (
    AuditStorageInterface,
    DualTierStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryRemoteStore,
    JsonFileCache,
    LedgerInterface,
    LocalCacheError,
    LocalCacheInterface,
    MemoryCache,
    RemoteStoreInterface,
    RemoteUnavailableError,
    StorageError,
    WriteAck,
)

__all__ = [
    # Ledger
    "StoreLedger",
    # Storage services
    "AuditStorageInterface",
    "DualTierStore",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryRemoteStore",
    "JsonFileCache",
    "LedgerInterface",
    "LocalCacheError",
    "LocalCacheInterface",
    "MemoryCache",
    "RemoteStoreInterface",
    "RemoteUnavailableError",
    "StorageError",
    "WriteAck",
]
