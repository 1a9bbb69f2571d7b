"""
Data Models Package

This package contains all Pydantic models used by the engine.
Everything handed to the store is dumped from these schemas.
"""

from recurring_items.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from recurring_items.models.item import (
    DOCUMENT_TYPES,
    EXPENSE_TRANSITIONS,
    INCOME_TRANSITIONS,
    ITEM_TYPES,
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
    PeriodDocument,
    make_item_id,
)
from recurring_items.models.ledger import (
    MANUAL_SOURCE,
    RECURRING_SOURCE,
    LedgerTransaction,
)
from recurring_items.models.period import (
    PeriodKey,
    next_period,
    period_bounds,
    period_of,
    previous_period,
    shift_period,
    utc_now,
    validate_period_key,
)
from recurring_items.models.template import (
    PLACEHOLDER_PREFIX,
    Cadence,
    FixedItemTemplate,
    ItemKind,
    is_placeholder_id,
    normalize_name,
)
from recurring_items.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Items and periods
    "DOCUMENT_TYPES",
    "EXPENSE_TRANSITIONS",
    "INCOME_TRANSITIONS",
    "ITEM_TYPES",
    "ExpenseItem",
    "ExpensePeriodDocument",
    "ExpenseStatus",
    "ExpenseTotals",
    "ExtraEntry",
    "IncomeItem",
    "IncomePeriodDocument",
    "IncomeStatus",
    "IncomeTotals",
    "MonthlyItem",
    "PeriodDocument",
    "make_item_id",
    # Ledger
    "MANUAL_SOURCE",
    "RECURRING_SOURCE",
    "LedgerTransaction",
    # Period keys
    "PeriodKey",
    "next_period",
    "period_bounds",
    "period_of",
    "previous_period",
    "shift_period",
    "utc_now",
    "validate_period_key",
    # Templates
    "PLACEHOLDER_PREFIX",
    "Cadence",
    "FixedItemTemplate",
    "ItemKind",
    "is_placeholder_id",
    "normalize_name",
    # Validation
    "ValidationIssue",
    "ValidationResult",
]
