"""
Engine package.

Template Registry -> Period Materializer -> Lifecycle Controllers -> Ledger,
with the repair and legacy migration passes alongside.
"""

from recurring_items.engine.templates import TemplateRegistry, templates_collection
from recurring_items.engine.periods import PeriodMaterializer, PeriodState, periods_collection
from recurring_items.engine.repair import LedgerRepairPass, RepairReport
from recurring_items.engine.lifecycle import ExpenseLifecycleController, IncomeLifecycleController
from recurring_items.engine.migration import LegacyMigrationPass, MigrationReport

__all__ = [
    "ExpenseLifecycleController",
    "IncomeLifecycleController",
    "LedgerRepairPass",
    "LegacyMigrationPass",
    "MigrationReport",
    "PeriodMaterializer",
    "PeriodState",
    "RepairReport",
    "TemplateRegistry",
    "periods_collection",
    "templates_collection",
]
