"""
Ledger Service

The ledger keeps real money movement, stored through the same
dual-tier store as everything else. Entries created while offline get
a placeholder id and are queued for the remote like any other write.
"""

from typing import Optional

import structlog

from recurring_items.models.ledger import LedgerTransaction
from recurring_items.services.storage.dual_tier import DualTierStore
from recurring_items.services.storage.interface import LedgerInterface


logger = structlog.get_logger(__name__)


TRANSACTIONS_COLLECTION = "transactions"


class StoreLedger(LedgerInterface):
    """Ledger over a DualTierStore collection."""

    def __init__(self, store: DualTierStore, collection: str = TRANSACTIONS_COLLECTION):
        self._store = store
        self._collection = collection

    async def create(self, transaction: LedgerTransaction) -> str:
        tx_id = transaction.id or await self._store.new_id(self._collection)
        record = transaction.model_copy(update={"id": tx_id})
        await self._store.write(self._collection, tx_id, record.model_dump(mode="json"))
        logger.info(
            "ledger_transaction_created",
            transaction_id=tx_id,
            amount=str(record.amount),
            kind=record.kind.value,
            item_id=record.item_id,
        )
        return tx_id

    async def delete(self, transaction_id: str) -> bool:
        if await self._store.read(self._collection, transaction_id) is None:
            logger.info("ledger_transaction_already_gone", transaction_id=transaction_id)
            return False
        await self._store.delete(self._collection, transaction_id)
        logger.info("ledger_transaction_deleted", transaction_id=transaction_id)
        return True

    async def get(self, transaction_id: str) -> Optional[LedgerTransaction]:
        raw = await self._store.read(self._collection, transaction_id)
        return LedgerTransaction.model_validate(raw) if raw else None

    async def find_by_item(self, item_id: str) -> list[LedgerTransaction]:
        matches = [tx for tx in await self._all() if tx.item_id == item_id]
        return sorted(matches, key=lambda tx: tx.created_at)

    async def list_transactions(self) -> list[LedgerTransaction]:
        return sorted(await self._all(), key=lambda tx: tx.occurred_at)

    async def _all(self) -> list[LedgerTransaction]:
        raw = await self._store.read_all(self._collection)
        return [LedgerTransaction.model_validate(value) for value in raw.values()]
