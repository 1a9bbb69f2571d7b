"""
Ledger Repair Pass

Pay and undo touch two records (the ledger entry and the period item)
with no transaction spanning them. When one step lands and the other
does not, this pass re-reads the ledger and heals the item:

- paid item whose ledger entry is gone  -> pending (amount kept)
- pending item with an entry tagged with its id -> paid, adopting it

Extra entries for the same item are reported as duplicates. They are
never deleted here: removing money records is the user's call.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, Field

from recurring_items.audit import AuditLogger
from recurring_items.engine.periods import PeriodMaterializer
from recurring_items.models.item import ExpenseItem, ExpensePeriodDocument, ExpenseStatus
from recurring_items.models.ledger import LedgerTransaction
from recurring_items.models.template import ItemKind
from recurring_items.services.storage.interface import LedgerInterface


logger = structlog.get_logger(__name__)


class RepairReport(BaseModel):
    """What a repair run changed in one period."""

    period: str
    reset_to_pending: list[str] = Field(default_factory=list)
    adopted: list[str] = Field(default_factory=list)
    duplicates: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.reset_to_pending or self.adopted)


class LedgerRepairPass:
    """Reconciles expense items with the ledger."""

    def __init__(
        self,
        materializer: PeriodMaterializer,
        ledger: LedgerInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        if materializer.kind != ItemKind.EXPENSE:
            raise ValueError("Only expense periods are linked to the ledger")
        self._materializer = materializer
        self._ledger = ledger
        self._audit = audit_logger or AuditLogger()

    async def repair_period(self, period: str) -> RepairReport:
        document = await self._materializer.ensure_period(period)
        return await self.repair_document(document)

    async def repair_document(self, document: ExpensePeriodDocument) -> RepairReport:
        """Heal every item of a loaded document in place, saving if anything changed."""
        report = RepairReport(period=document.period)

        transactions = await self._ledger.list_transactions()
        by_id = {tx.id: tx for tx in transactions}
        by_item: dict[str, list[LedgerTransaction]] = {}
        for tx in sorted(transactions, key=lambda t: t.created_at):
            if tx.item_id:
                by_item.setdefault(tx.item_id, []).append(tx)

        for item in list(document.items):
            healed = await self._heal(
                item,
                report,
                linked=by_id.get(item.linked_transaction_id) if item.linked_transaction_id else None,
                candidates=by_item.get(item.id, []),
            )
            if healed is not item:
                document.replace_item(healed)

        if report.changed:
            await self._materializer.save_period(document)
            logger.warning(
                "period_repaired",
                period=document.period,
                reset_to_pending=report.reset_to_pending,
                adopted=report.adopted,
            )
        return report

    async def heal_item(self, document: ExpensePeriodDocument, item: ExpenseItem) -> ExpenseItem:
        """Heal a single item before acting on it."""
        report = RepairReport(period=document.period)
        linked = None
        candidates: list[LedgerTransaction] = []
        if item.status == ExpenseStatus.PAID:
            linked = await self._ledger.get(item.linked_transaction_id)
        elif item.status == ExpenseStatus.PENDING:
            candidates = await self._ledger.find_by_item(item.id)

        healed = await self._heal(item, report, linked=linked, candidates=candidates)
        if healed is not item:
            document.replace_item(healed)
            await self._materializer.save_period(document)
        return healed

    async def _heal(
        self,
        item: ExpenseItem,
        report: RepairReport,
        linked: Optional[LedgerTransaction],
        candidates: list[LedgerTransaction],
    ) -> ExpenseItem:
        if item.status == ExpenseStatus.PAID and linked is None:
            missing_id = item.linked_transaction_id
            report.reset_to_pending.append(item.id)
            await self._audit.log_item_repaired(
                item_id=item.id,
                period=item.period,
                reason="linked_transaction_missing",
                transaction_id=missing_id,
            )
            return item.mark_unpaid()

        if item.status == ExpenseStatus.PENDING and candidates:
            adopted, *extra = candidates
            if extra:
                report.duplicates[item.id] = [tx.id for tx in extra]
                logger.warning(
                    "duplicate_ledger_entries",
                    item_id=item.id,
                    kept=adopted.id,
                    duplicates=report.duplicates[item.id],
                )
            report.adopted.append(item.id)
            await self._audit.log_item_repaired(
                item_id=item.id,
                period=item.period,
                reason="orphan_transaction_adopted",
                transaction_id=adopted.id,
            )
            return item.mark_paid(adopted.id, amount=adopted.amount, at=adopted.created_at)

        return item
