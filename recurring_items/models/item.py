"""
Period Item Models

A MonthlyItem is a period-scoped instance of a template. It carries
its own amount and status, independent of the template it came from.

CRITICAL: Item ids are derived from (template_id, period) and never
generated randomly. This is the idempotency key of materialization.

Status is a closed set per side, with an explicit transition table.
Transitions return a new, validated item; an item in an inconsistent
state (e.g. "paid" without a ledger link) cannot be constructed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from recurring_items.exceptions import InvalidTransitionError, ItemNotFoundError
from recurring_items.models.period import PeriodKey, utc_now
from recurring_items.models.template import FixedItemTemplate, ItemKind


def make_item_id(template_id: str, period: str) -> str:
    """Deterministic item id for a (template, period) pair."""
    return f"{template_id}_{period}"


# =============================================================================
# STATUS DOMAINS
# =============================================================================

class ExpenseStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SKIPPED = "skipped"  # Terminal for the period


class IncomeStatus(str, Enum):
    PENDING = "pending"
    RECEIVED = "received"


EXPENSE_TRANSITIONS: dict[ExpenseStatus, frozenset[ExpenseStatus]] = {
    ExpenseStatus.PENDING: frozenset({ExpenseStatus.PAID, ExpenseStatus.SKIPPED}),
    ExpenseStatus.PAID: frozenset({ExpenseStatus.PENDING}),
    ExpenseStatus.SKIPPED: frozenset(),
}

INCOME_TRANSITIONS: dict[IncomeStatus, frozenset[IncomeStatus]] = {
    IncomeStatus.PENDING: frozenset({IncomeStatus.RECEIVED}),
    IncomeStatus.RECEIVED: frozenset({IncomeStatus.PENDING}),
}


# =============================================================================
# ITEMS
# =============================================================================

class MonthlyItem(BaseModel):
    """Fields shared by expense and income items."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    transitions: ClassVar[dict] = {}

    id: str
    template_id: str = Field(..., min_length=1)
    period: PeriodKey
    name_snapshot: str = Field(..., min_length=1, max_length=200)
    category: str = "Other"
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_date: Optional[date] = None
    status_changed_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_deterministic_id(self) -> 'MonthlyItem':
        if self.id != make_item_id(self.template_id, self.period):
            raise ValueError(
                f"Item id {self.id!r} does not match template {self.template_id!r} "
                f"and period {self.period!r}"
            )
        return self

    @classmethod
    def from_template(cls, template: FixedItemTemplate, period: str):
        """Snapshot a template into a fresh pending item."""
        return cls(
            id=make_item_id(template.id, period),
            template_id=template.id,
            period=period,
            name_snapshot=template.display_name,
            category=template.category,
            amount=template.default_amount,
            due_date=template.due_date_in(period),
        )

    def can_transition(self, new_status) -> bool:
        return new_status in self.transitions[self.status]

    def _check_transition(self, new_status) -> None:
        if not self.can_transition(new_status):
            raise InvalidTransitionError(self.id, self.status.value, new_status.value)

    def _evolve(self, **changes):
        # Re-validate so no transition can produce an illegal state
        return type(self).model_validate({**self.model_dump(), **changes})


class ExpenseItem(MonthlyItem):
    """An expense item: pending, paid (linked to a ledger entry) or skipped."""

    transitions: ClassVar[dict] = EXPENSE_TRANSITIONS

    status: ExpenseStatus = ExpenseStatus.PENDING
    linked_transaction_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_ledger_link(self) -> 'ExpenseItem':
        if self.status == ExpenseStatus.PAID and not self.linked_transaction_id:
            raise ValueError("A paid item must be linked to a ledger transaction")
        if self.status != ExpenseStatus.PAID and self.linked_transaction_id:
            raise ValueError("Only paid items can be linked to a ledger transaction")
        return self

    def mark_paid(
        self,
        transaction_id: str,
        amount: Optional[Decimal] = None,
        at: Optional[datetime] = None,
    ) -> 'ExpenseItem':
        self._check_transition(ExpenseStatus.PAID)
        return self._evolve(
            status=ExpenseStatus.PAID,
            amount=self.amount if amount is None else amount,
            linked_transaction_id=transaction_id,
            status_changed_at=at or utc_now(),
        )

    def mark_unpaid(self) -> 'ExpenseItem':
        """Undo a payment. The amount keeps the last paid value."""
        self._check_transition(ExpenseStatus.PENDING)
        return self._evolve(
            status=ExpenseStatus.PENDING,
            linked_transaction_id=None,
            status_changed_at=None,
        )

    def mark_skipped(self, at: Optional[datetime] = None) -> 'ExpenseItem':
        self._check_transition(ExpenseStatus.SKIPPED)
        return self._evolve(
            status=ExpenseStatus.SKIPPED,
            status_changed_at=at or utc_now(),
        )

    def with_amount(self, amount: Decimal) -> 'ExpenseItem':
        if self.status == ExpenseStatus.PAID:
            # The ledger entry holds the paid amount; undo first
            raise InvalidTransitionError(self.id, self.status.value, "amount_change")
        return self._evolve(amount=amount)


class IncomeItem(MonthlyItem):
    """An income item: pending or received. No ledger effect."""

    transitions: ClassVar[dict] = INCOME_TRANSITIONS

    status: IncomeStatus = IncomeStatus.PENDING
    received_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_received_at(self) -> 'IncomeItem':
        if (self.status == IncomeStatus.RECEIVED) != (self.received_at is not None):
            raise ValueError("received_at must be set exactly when the item is received")
        return self

    def mark_received(self, at: Optional[datetime] = None) -> 'IncomeItem':
        self._check_transition(IncomeStatus.RECEIVED)
        moment = at or utc_now()
        return self._evolve(
            status=IncomeStatus.RECEIVED,
            received_at=moment,
            status_changed_at=moment,
        )

    def mark_pending(self, at: Optional[datetime] = None) -> 'IncomeItem':
        self._check_transition(IncomeStatus.PENDING)
        return self._evolve(
            status=IncomeStatus.PENDING,
            received_at=None,
            status_changed_at=at or utc_now(),
        )

    def with_amount(self, amount: Decimal) -> 'IncomeItem':
        return self._evolve(amount=amount)


class ExtraEntry(BaseModel):
    """An ad hoc income entry inside a period, not tied to any template."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    date: datetime
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# PERIOD DOCUMENTS
# =============================================================================

class ExpenseTotals(BaseModel):
    pending: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    skipped: Decimal = Decimal("0")
    projected: Decimal = Decimal("0")


class IncomeTotals(BaseModel):
    expected: Decimal = Decimal("0")
    received: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    extras: Decimal = Decimal("0")
    total_received: Decimal = Decimal("0")


class PeriodDocument(BaseModel):
    """
    All items of one period for one side.

    Created lazily, exactly once per period, by the materializer.
    """

    kind: ClassVar[ItemKind]

    period: PeriodKey
    initialized_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_items(self) -> 'PeriodDocument':
        seen: set[str] = set()
        for item in self.items:
            if item.period != self.period:
                raise ValueError(f"Item {item.id} belongs to {item.period}, not {self.period}")
            if item.template_id in seen:
                raise ValueError(
                    f"Template {item.template_id} has more than one item in {self.period}"
                )
            seen.add(item.template_id)
        return self

    def find_item(self, item_id: str):
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def item_for_template(self, template_id: str):
        for item in self.items:
            if item.template_id == template_id:
                return item
        return None

    def replace_item(self, item) -> None:
        for index, existing in enumerate(self.items):
            if existing.id == item.id:
                self.items[index] = item
                return
        raise ItemNotFoundError(self.period, item.id)


class ExpensePeriodDocument(PeriodDocument):
    kind: ClassVar[ItemKind] = ItemKind.EXPENSE

    items: list[ExpenseItem] = Field(default_factory=list)

    def totals(self) -> ExpenseTotals:
        totals = ExpenseTotals()
        for item in self.items:
            if item.status == ExpenseStatus.PENDING:
                totals.pending += item.amount
            elif item.status == ExpenseStatus.PAID:
                totals.paid += item.amount
            else:
                totals.skipped += item.amount
        totals.projected = totals.pending + totals.paid + totals.skipped
        return totals


class IncomePeriodDocument(PeriodDocument):
    kind: ClassVar[ItemKind] = ItemKind.INCOME

    items: list[IncomeItem] = Field(default_factory=list)
    extras: list[ExtraEntry] = Field(default_factory=list)

    def find_extra(self, extra_id: str) -> Optional[ExtraEntry]:
        for extra in self.extras:
            if extra.id == extra_id:
                return extra
        return None

    def totals(self) -> IncomeTotals:
        totals = IncomeTotals()
        for item in self.items:
            totals.expected += item.amount
            if item.status == IncomeStatus.RECEIVED:
                totals.received += item.amount
            else:
                totals.pending += item.amount
        totals.extras = sum((extra.amount for extra in self.extras), Decimal("0"))
        totals.total_received = totals.received + totals.extras
        return totals


ITEM_TYPES = {
    ItemKind.EXPENSE: ExpenseItem,
    ItemKind.INCOME: IncomeItem,
}

DOCUMENT_TYPES = {
    ItemKind.EXPENSE: ExpensePeriodDocument,
    ItemKind.INCOME: IncomePeriodDocument,
}
