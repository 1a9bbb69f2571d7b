"""
Shared fixtures.

Everything runs against in-memory tiers: no network, no files
(except where a test asks for tmp_path). Retries and backoff are
zeroed so degraded paths run instantly.
"""

from decimal import Decimal

import pytest

from recurring_items.audit import AuditLogger
from recurring_items.config import AppSettings, SyncSettings
from recurring_items.engine import (
    ExpenseLifecycleController,
    IncomeLifecycleController,
    LedgerRepairPass,
    LegacyMigrationPass,
    PeriodMaterializer,
    TemplateRegistry,
)
from recurring_items.models import FixedItemTemplate, ItemKind
from recurring_items.services import (
    DualTierStore,
    InMemoryAuditStorage,
    InMemoryRemoteStore,
    MemoryCache,
    StoreLedger,
)
from recurring_items.validation import TemplateValidator


USER_ID = "test-user"


@pytest.fixture
def sync_settings():
    return SyncSettings(
        remote_enabled=False,
        retry_attempts=1,
        retry_wait_min_seconds=0,
        retry_wait_max_seconds=0,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        outbox_alert_attempts=3,
        repair_on_access=True,
    )


@pytest.fixture
def app_settings():
    return AppSettings(
        user_id=USER_ID,
        max_reasonable_amount=Decimal("1000000"),
        migration_duplicate_tolerance_seconds=60,
    )


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def store(cache, remote, sync_settings, audit_logger):
    return DualTierStore(cache, remote, USER_ID, sync_settings, audit_logger)


@pytest.fixture
def ledger(store):
    return StoreLedger(store)


@pytest.fixture
def validator():
    return TemplateValidator(Decimal("1000000"))


@pytest.fixture
def expense_registry(store, validator, audit_logger):
    return TemplateRegistry(store, ItemKind.EXPENSE, validator, audit_logger)


@pytest.fixture
def income_registry(store, validator, audit_logger):
    return TemplateRegistry(store, ItemKind.INCOME, validator, audit_logger)


@pytest.fixture
def expense_periods(expense_registry, store, audit_logger):
    return PeriodMaterializer(expense_registry, store, audit_logger)


@pytest.fixture
def income_periods(income_registry, store, audit_logger):
    return PeriodMaterializer(income_registry, store, audit_logger)


@pytest.fixture
def repair(expense_periods, ledger, audit_logger):
    return LedgerRepairPass(expense_periods, ledger, audit_logger)


@pytest.fixture
def expenses(expense_periods, ledger, repair, sync_settings, audit_logger):
    return ExpenseLifecycleController(
        expense_periods,
        ledger,
        repair=repair,
        sync_settings=sync_settings,
        audit_logger=audit_logger,
    )


@pytest.fixture
def income(income_periods, audit_logger):
    return IncomeLifecycleController(income_periods, audit_logger)


@pytest.fixture
def migration(store, ledger, expense_registry, income_registry, income, app_settings, audit_logger):
    return LegacyMigrationPass(
        store,
        ledger,
        {ItemKind.EXPENSE: expense_registry, ItemKind.INCOME: income_registry},
        income,
        app_settings=app_settings,
        audit_logger=audit_logger,
    )


@pytest.fixture
def new_template():
    """Build an unsaved template; amount given as a string."""
    def _make(name: str = "Rent", amount: str = "1000", **overrides) -> FixedItemTemplate:
        return FixedItemTemplate(display_name=name, default_amount=Decimal(amount), **overrides)
    return _make


@pytest.fixture
async def rent(expense_registry, new_template):
    return await expense_registry.upsert(new_template("Rent", "1000", category="Housing"))


@pytest.fixture
async def salary(income_registry, new_template):
    return await income_registry.upsert(new_template("Salary", "5000", category="Work", anchor_day=25))
