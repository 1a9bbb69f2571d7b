"""
Component Wiring for the Recurring Items Engine

This module ties together all the components:
1. Storage: local cache + optional Google Sheets remote, behind the dual-tier store
2. Ledger over the same store
3. Per side: template registry, period materializer, lifecycle controller
4. Repair and legacy migration passes

DESIGN DECISION: Remote storage is optional. When it is disabled or
not configured, the engine runs fully offline and queues every remote
write in the outbox until a remote is wired in.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from recurring_items.audit import AuditLogger
from recurring_items.config import Settings, get_settings
from recurring_items.engine import (
    ExpenseLifecycleController,
    IncomeLifecycleController,
    LedgerRepairPass,
    LegacyMigrationPass,
    PeriodMaterializer,
    TemplateRegistry,
)
from recurring_items.models.template import ItemKind
from recurring_items.services.ledger import StoreLedger
from recurring_items.services.storage import (
    DualTierStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    JsonFileCache,
    LocalCacheInterface,
    MemoryCache,
    RemoteStoreInterface,
)
from recurring_items.validation import TemplateValidator


logger = structlog.get_logger(__name__)


@dataclass
class EngineComponents:
    """Everything a caller needs to drive the engine."""

    store: DualTierStore
    ledger: StoreLedger
    expense_templates: TemplateRegistry
    income_templates: TemplateRegistry
    expense_periods: PeriodMaterializer
    income_periods: PeriodMaterializer
    expenses: ExpenseLifecycleController
    income: IncomeLifecycleController
    repair: LedgerRepairPass
    migration: LegacyMigrationPass
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient] = None

    def registry(self, kind: ItemKind) -> TemplateRegistry:
        return self.expense_templates if kind == ItemKind.EXPENSE else self.income_templates


def _build_cache(settings: Settings) -> LocalCacheInterface:
    cache_settings = settings.local_cache
    if cache_settings.backend == "memory":
        return MemoryCache()
    return JsonFileCache(cache_settings.directory)


def create_app_components(
    settings: Optional[Settings] = None,
    use_remote: Optional[bool] = None,
    user_id: Optional[str] = None,
    cache: Optional[LocalCacheInterface] = None,
    remote: Optional[RemoteStoreInterface] = None,
) -> EngineComponents:
    """
    Factory function to create all engine components.

    Args:
        settings: Settings to use (defaults to get_settings())
        use_remote: Override SYNC_REMOTE_ENABLED. Ignored when a
                    remote is passed in.
        user_id: Override APP_USER_ID
        cache: Local tier to use instead of the configured one
        remote: Remote tier to use instead of Google Sheets

    Raises:
        AuthenticationRequiredError: If no user id is available
    """
    settings = settings or get_settings()
    sync_settings = settings.sync
    app_settings = settings.app
    use_remote = sync_settings.remote_enabled if use_remote is None else use_remote

    if cache is None:
        cache = _build_cache(settings)
    sheets_client = None
    audit_logger = AuditLogger()  # Local-only logging

    if remote is None and use_remote:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            remote = GoogleSheetsDocumentStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Remote not configured - continue offline
            logger.warning("remote_storage_not_configured", error=str(e))
            sheets_client = None
            remote = None

    store = DualTierStore(
        cache,
        remote,
        user_id=user_id or app_settings.user_id,
        sync_settings=sync_settings,
        audit_logger=audit_logger,
    )
    ledger = StoreLedger(store)
    validator = TemplateValidator(app_settings.max_reasonable_amount)

    expense_templates = TemplateRegistry(store, ItemKind.EXPENSE, validator, audit_logger)
    income_templates = TemplateRegistry(store, ItemKind.INCOME, validator, audit_logger)
    expense_periods = PeriodMaterializer(expense_templates, store, audit_logger)
    income_periods = PeriodMaterializer(income_templates, store, audit_logger)

    repair = LedgerRepairPass(expense_periods, ledger, audit_logger)
    expenses = ExpenseLifecycleController(
        expense_periods,
        ledger,
        repair=repair,
        sync_settings=sync_settings,
        audit_logger=audit_logger,
    )
    income = IncomeLifecycleController(income_periods, audit_logger)

    migration = LegacyMigrationPass(
        store,
        ledger,
        {ItemKind.EXPENSE: expense_templates, ItemKind.INCOME: income_templates},
        income,
        app_settings=app_settings,
        audit_logger=audit_logger,
    )

    logger.info(
        "engine_components_created",
        user_id=store.user_id,
        remote=type(remote).__name__ if remote else None,
        cache=type(cache).__name__,
    )

    return EngineComponents(
        store=store,
        ledger=ledger,
        expense_templates=expense_templates,
        income_templates=income_templates,
        expense_periods=expense_periods,
        income_periods=income_periods,
        expenses=expenses,
        income=income,
        repair=repair,
        migration=migration,
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
