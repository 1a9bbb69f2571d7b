"""
Item Lifecycle Controllers

Executes status transitions on materialized items.

Expense side: pay / undo / skip. Pay and undo are two-step sagas
across the ledger and the period document:

    pay:  create ledger entry -> mark item paid -> save period
          (save fails: delete the entry again)
    undo: delete ledger entry -> mark item pending -> save period
          (save fails: LedgerRepairPass heals the item on next access)

Income side: toggle received, plus CRUD on extra entries. Income
has no ledger effect.

Missing items are a no-op for skip / toggle_received / extras and an
explicit error for pay / undo.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from recurring_items.audit import AuditLogger
from recurring_items.config import SyncSettings, get_settings
from recurring_items.engine.periods import PeriodMaterializer
from recurring_items.engine.repair import LedgerRepairPass
from recurring_items.exceptions import (
    InvalidTransitionError,
    ItemNotFoundError,
    PartialOperationError,
    TemplateNotFoundError,
    ValidationFailedError,
)
from recurring_items.models.audit import AuditEventType
from recurring_items.models.item import (
    ExpenseItem,
    ExpensePeriodDocument,
    ExpenseStatus,
    ExpenseTotals,
    ExtraEntry,
    IncomeItem,
    IncomePeriodDocument,
    IncomeStatus,
    IncomeTotals,
    MonthlyItem,
)
from recurring_items.models.ledger import RECURRING_SOURCE, LedgerTransaction
from recurring_items.models.period import utc_now
from recurring_items.models.template import ItemKind
from recurring_items.services.storage.interface import LedgerInterface
from recurring_items.validation import validate_amount


logger = structlog.get_logger(__name__)


EXTRAS_COLLECTION = "extras"
EDITABLE_EXTRA_FIELDS = frozenset({"description", "amount", "date"})


class _LifecycleController:
    """Behaviour shared by both sides."""

    kind: ItemKind

    def __init__(
        self,
        materializer: PeriodMaterializer,
        audit_logger: Optional[AuditLogger] = None,
    ):
        if materializer.kind != self.kind:
            raise ValueError(
                f"{type(self).__name__} needs a {self.kind.value} materializer, "
                f"got {materializer.kind.value}"
            )
        self._materializer = materializer
        self._registry = materializer.registry
        self._audit = audit_logger or AuditLogger()

    @property
    def materializer(self) -> PeriodMaterializer:
        return self._materializer

    async def update_amount(
        self,
        period: str,
        item_id: str,
        amount: Union[Decimal, int, float, str],
        persist_as_default: bool = False,
    ) -> Optional[MonthlyItem]:
        """
        Change the amount of one period's item.

        With persist_as_default the template's default changes too, so
        periods materialized from now on start from it. Periods that
        already exist keep their own amounts.
        """
        amount = validate_amount(amount)
        document = await self._materializer.ensure_period(period)
        item = document.find_item(item_id)
        if item is None:
            logger.info("update_amount_missing_item", period=period, item_id=item_id)
            return None

        updated = item.with_amount(amount)
        document.replace_item(updated)
        await self._materializer.save_period(document)

        persisted = False
        if persist_as_default:
            try:
                await self._registry.update(item.template_id, default_amount=amount)
                persisted = True
            except TemplateNotFoundError:
                logger.warning(
                    "default_amount_not_persisted",
                    item_id=item_id,
                    template_id=item.template_id,
                    reason="template_deleted",
                )

        await self._audit.log_amount_updated(
            item_id=item_id,
            period=period,
            old_amount=item.amount,
            new_amount=amount,
            persisted_as_default=persisted,
        )
        return updated


class ExpenseLifecycleController(_LifecycleController):
    """Pay, undo and skip expense items."""

    kind = ItemKind.EXPENSE

    def __init__(
        self,
        materializer: PeriodMaterializer,
        ledger: LedgerInterface,
        repair: Optional[LedgerRepairPass] = None,
        sync_settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(materializer, audit_logger)
        self._ledger = ledger
        self._repair = repair or LedgerRepairPass(materializer, ledger, self._audit)
        self._repair_on_access = (sync_settings or get_settings().sync).repair_on_access

    async def load_period(self, period: str) -> ExpensePeriodDocument:
        """Materialize if needed, then reconcile with the ledger."""
        document = await self._materializer.ensure_period(period)
        if self._repair_on_access:
            await self._repair.repair_document(document)
        return document

    async def totals(self, period: str) -> ExpenseTotals:
        return (await self._materializer.ensure_period(period)).totals()

    async def _load_item(self, period: str, item_id: str) -> tuple[ExpensePeriodDocument, ExpenseItem]:
        document = await self._materializer.ensure_period(period)
        item = document.find_item(item_id)
        if item is None:
            raise ItemNotFoundError(period, item_id)
        if self._repair_on_access:
            item = await self._repair.heal_item(document, item)
        return document, item

    async def pay(
        self,
        period: str,
        item_id: str,
        actual_amount: Optional[Union[Decimal, int, float, str]] = None,
    ) -> ExpenseItem:
        """
        Mark a pending item paid and record the money movement.

        Raises:
            ValidationFailedError: Malformed amount
            ItemNotFoundError: No such item in the period
            InvalidTransitionError: Item is not pending
            PartialOperationError: The item could not be saved and the
                                   ledger entry could not be removed again
        """
        amount = validate_amount(actual_amount) if actual_amount is not None else None
        document, item = await self._load_item(period, item_id)
        if not item.can_transition(ExpenseStatus.PAID):
            raise InvalidTransitionError(item.id, item.status.value, ExpenseStatus.PAID.value)
        amount = item.amount if amount is None else amount

        transaction_id = await self._ledger.create(LedgerTransaction(
            amount=amount,
            kind=ItemKind.EXPENSE,
            category=item.category,
            description=item.name_snapshot,
            occurred_at=utc_now(),
            is_recurring=True,
            source=RECURRING_SOURCE,
            template_id=item.template_id,
            item_id=item.id,
            period=period,
        ))

        paid = item.mark_paid(transaction_id, amount=amount)
        document.replace_item(paid)
        try:
            await self._materializer.save_period(document)
        except Exception as e:
            await self._report_partial("pay", paid, transaction_id, e)
            try:
                await self._ledger.delete(transaction_id)
            except Exception as compensation_error:
                raise PartialOperationError(
                    f"Paid {item_id} in the ledger ({transaction_id}) but could not save the item "
                    f"or remove the entry again",
                    period=period,
                    item_id=item_id,
                    transaction_id=transaction_id,
                ) from compensation_error
            logger.warning("pay_compensated", period=period, item_id=item_id, transaction_id=transaction_id)
            raise

        logger.info("item_paid", period=period, item_id=item_id, amount=str(amount), transaction_id=transaction_id)
        await self._audit.log_item_paid(
            item_id=item_id,
            period=period,
            amount=amount,
            transaction_id=transaction_id,
        )
        return paid

    async def undo(self, period: str, item_id: str) -> ExpenseItem:
        """
        Revert a payment. The item keeps the amount that was paid.

        Raises:
            ItemNotFoundError: No such item in the period
            InvalidTransitionError: Item is not paid
            PartialOperationError: The ledger entry is gone but the item
                                   could not be saved
        """
        document, item = await self._load_item(period, item_id)
        if item.status != ExpenseStatus.PAID:
            raise InvalidTransitionError(item.id, item.status.value, ExpenseStatus.PENDING.value)

        transaction_id = item.linked_transaction_id
        await self._ledger.delete(transaction_id)

        unpaid = item.mark_unpaid()
        document.replace_item(unpaid)
        try:
            await self._materializer.save_period(document)
        except Exception as e:
            await self._report_partial("undo", item, transaction_id, e)
            raise PartialOperationError(
                f"Removed ledger entry {transaction_id} but could not save {item_id}",
                period=period,
                item_id=item_id,
                transaction_id=transaction_id,
            ) from e

        logger.info("item_unpaid", period=period, item_id=item_id, transaction_id=transaction_id)
        await self._audit.log_item_unpaid(item_id=item_id, period=period, transaction_id=transaction_id)
        return unpaid

    async def skip(self, period: str, item_id: str) -> Optional[ExpenseItem]:
        """Skip a pending item for this period. Skipping is final."""
        document = await self._materializer.ensure_period(period)
        item = document.find_item(item_id)
        if item is None:
            logger.info("skip_missing_item", period=period, item_id=item_id)
            return None
        if item.status == ExpenseStatus.SKIPPED:
            return item

        skipped = item.mark_skipped()
        document.replace_item(skipped)
        await self._materializer.save_period(document)
        await self._audit.log_item_skipped(item_id=item_id, period=period)
        return skipped

    async def _report_partial(
        self,
        operation: str,
        item: ExpenseItem,
        transaction_id: Optional[str],
        error: Exception,
    ) -> None:
        logger.critical(
            "partial_operation",
            operation=operation,
            period=item.period,
            item_id=item.id,
            transaction_id=transaction_id,
            error=str(error),
        )
        await self._audit.log_partial_operation(
            operation=operation,
            item_id=item.id,
            period=item.period,
            transaction_id=transaction_id,
            error_message=str(error),
        )


class IncomeLifecycleController(_LifecycleController):
    """Received toggles and extra entries on the income side."""

    kind = ItemKind.INCOME

    async def totals(self, period: str) -> IncomeTotals:
        return (await self._materializer.ensure_period(period)).totals()

    async def toggle_received(
        self,
        period: str,
        item_id: str,
        new_status: Union[IncomeStatus, str],
    ) -> Optional[IncomeItem]:
        try:
            new_status = IncomeStatus(new_status)
        except ValueError:
            raise ValidationFailedError(f"Unknown income status: {new_status!r}")

        document = await self._materializer.ensure_period(period)
        item = document.find_item(item_id)
        if item is None:
            logger.info("toggle_missing_item", period=period, item_id=item_id)
            return None
        if item.status == new_status:
            return item

        if new_status == IncomeStatus.RECEIVED:
            updated = item.mark_received()
        else:
            updated = item.mark_pending()
        document.replace_item(updated)
        await self._materializer.save_period(document)
        await self._audit.log_income_status_changed(item_id=item_id, period=period, status=new_status.value)
        return updated

    async def add_extra(
        self,
        period: str,
        description: str,
        amount: Union[Decimal, int, float, str],
        date: Optional[datetime] = None,
        extra_id: Optional[str] = None,
    ) -> ExtraEntry:
        amount = validate_amount(amount)
        document: IncomePeriodDocument = await self._materializer.ensure_period(period)
        if extra_id is None or document.find_extra(extra_id) is not None:
            extra_id = await self._materializer.store.new_id(EXTRAS_COLLECTION)

        try:
            extra = ExtraEntry(
                id=extra_id,
                description=description,
                amount=amount,
                date=date or utc_now(),
            )
        except ValidationError as e:
            raise ValidationFailedError(f"Invalid extra entry: {e}")

        document.extras.append(extra)
        await self._materializer.save_period(document)
        await self._audit.log_extra_changed(
            event_type=AuditEventType.EXTRA_ADDED,
            extra_id=extra.id,
            period=period,
            amount=amount,
        )
        return extra

    async def edit_extra(self, period: str, extra_id: str, **changes) -> Optional[ExtraEntry]:
        unknown = set(changes) - EDITABLE_EXTRA_FIELDS
        if unknown:
            raise ValidationFailedError(f"Cannot edit extra fields: {', '.join(sorted(unknown))}")
        if "amount" in changes:
            changes["amount"] = validate_amount(changes["amount"])

        document: IncomePeriodDocument = await self._materializer.ensure_period(period)
        extra = document.find_extra(extra_id)
        if extra is None:
            return None

        try:
            updated = ExtraEntry.model_validate({**extra.model_dump(), **changes})
        except ValidationError as e:
            raise ValidationFailedError(f"Invalid extra entry: {e}")

        document.extras = [updated if e.id == extra_id else e for e in document.extras]
        await self._materializer.save_period(document)
        await self._audit.log_extra_changed(
            event_type=AuditEventType.EXTRA_EDITED,
            extra_id=extra_id,
            period=period,
            amount=updated.amount,
        )
        return updated

    async def delete_extra(self, period: str, extra_id: str) -> bool:
        document: IncomePeriodDocument = await self._materializer.ensure_period(period)
        if document.find_extra(extra_id) is None:
            return False

        document.extras = [e for e in document.extras if e.id != extra_id]
        await self._materializer.save_period(document)
        await self._audit.log_extra_changed(
            event_type=AuditEventType.EXTRA_DELETED,
            extra_id=extra_id,
            period=period,
        )
        return True
