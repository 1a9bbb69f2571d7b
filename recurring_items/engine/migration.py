"""
Legacy Migration Pass

Before templates existed, recurring expenses and salaries were plain
ledger entries flagged is_recurring, and one-off income lived only in
the ledger. This pass imports both:

1. Each distinct recurring entry name (per side) becomes a template,
   built from the earliest matching entry
2. Each one-off income entry becomes an extra in the period of its date

The pass is re-runnable and idempotent: templates are matched by
normalized name, extras by a duplicate heuristic (same description,
amount within 0.01, date within a configurable tolerance). A marker
document records completion so normal startups skip it.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError

from recurring_items.audit import AuditLogger, create_correlation_id
from recurring_items.config import AppSettings, get_settings
from recurring_items.engine.lifecycle import IncomeLifecycleController
from recurring_items.engine.templates import TemplateRegistry
from recurring_items.exceptions import ValidationFailedError
from recurring_items.models.item import IncomePeriodDocument
from recurring_items.models.ledger import LedgerTransaction
from recurring_items.models.period import period_of, utc_now
from recurring_items.models.template import Cadence, FixedItemTemplate, ItemKind, normalize_name
from recurring_items.services.storage.dual_tier import DualTierStore
from recurring_items.services.storage.interface import LedgerInterface


logger = structlog.get_logger(__name__)


META_COLLECTION = "_meta"
MIGRATION_MARKER_KEY = "legacy_migration"
AMOUNT_TOLERANCE = Decimal("0.01")

# Legacy ledger text may be longer than template and extra fields allow
NAME_LIMIT = 200
CATEGORY_LIMIT = 100


class MigrationReport(BaseModel):
    templates_created: int = 0
    templates_skipped: int = 0
    extras_imported: int = 0
    extras_skipped: int = 0
    extras_failed: int = 0
    already_completed: bool = False
    completed_at: Optional[datetime] = None


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _legacy_name(tx: LedgerTransaction) -> str:
    return (tx.description or tx.category or "").strip()[:NAME_LIMIT].strip()


class LegacyMigrationPass:
    """Imports pre-template ledger history into templates and extras."""

    def __init__(
        self,
        store: DualTierStore,
        ledger: LedgerInterface,
        registries: dict[ItemKind, TemplateRegistry],
        income: IncomeLifecycleController,
        app_settings: Optional[AppSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._registries = registries
        self._income = income
        settings = app_settings or get_settings().app
        self._date_tolerance = timedelta(seconds=settings.migration_duplicate_tolerance_seconds)
        self._audit = audit_logger or AuditLogger()

    async def is_completed(self) -> bool:
        return await self._store.read(META_COLLECTION, MIGRATION_MARKER_KEY) is not None

    async def run(self, force: bool = False) -> MigrationReport:
        """
        Run the migration.

        Args:
            force: Run even if a previous run completed
        """
        if not force and await self.is_completed():
            logger.info("legacy_migration_skipped", reason="already_completed")
            return MigrationReport(already_completed=True)

        correlation_id = create_correlation_id()
        log = logger.bind(correlation_id=str(correlation_id))
        log.info("legacy_migration_started", forced=force)

        transactions = await self._ledger.list_transactions()
        report = MigrationReport()

        for kind, registry in self._registries.items():
            await self._import_templates(kind, registry, transactions, report)

        await self._import_extras(transactions, report)

        report.completed_at = utc_now()
        await self._store.write(META_COLLECTION, MIGRATION_MARKER_KEY, report.model_dump(mode="json"))

        log.info(
            "legacy_migration_completed",
            templates_created=report.templates_created,
            templates_skipped=report.templates_skipped,
            extras_imported=report.extras_imported,
            extras_skipped=report.extras_skipped,
            extras_failed=report.extras_failed,
        )
        await self._audit.log_migration_completed(
            templates_created=report.templates_created,
            extras_imported=report.extras_imported,
            extras_skipped=report.extras_skipped,
            correlation_id=correlation_id,
        )
        return report

    async def _import_templates(
        self,
        kind: ItemKind,
        registry: TemplateRegistry,
        transactions: list[LedgerTransaction],
        report: MigrationReport,
    ) -> None:
        known = {template.normalized_name for template in await registry.list()}

        # Oldest first, so the first entry seen for a name is the one used
        for tx in transactions:
            if tx.kind != kind or not tx.is_recurring or tx.is_engine_generated:
                continue
            name = _legacy_name(tx)
            if not name or normalize_name(name) in known:
                continue

            cadence = tx.frequency or Cadence.MONTHLY
            occurred = _as_utc(tx.occurred_at)
            try:
                template = await registry.upsert(FixedItemTemplate(
                    display_name=name,
                    default_amount=tx.amount.quantize(AMOUNT_TOLERANCE),
                    category=(tx.category or "Other")[:CATEGORY_LIMIT],
                    cadence=cadence,
                    anchor_day=occurred.isoweekday() if cadence == Cadence.WEEKLY else occurred.day,
                ))
            except (ValidationError, ValidationFailedError) as e:
                report.templates_skipped += 1
                logger.warning(
                    "legacy_template_rejected",
                    kind=kind.value,
                    source_transaction_id=tx.id,
                    error=str(e),
                )
                continue

            known.add(template.normalized_name)
            report.templates_created += 1
            logger.info(
                "legacy_template_created",
                template_id=template.id,
                kind=kind.value,
                source_transaction_id=tx.id,
            )

    async def _import_extras(self, transactions: list[LedgerTransaction], report: MigrationReport) -> None:
        for tx in transactions:
            if tx.kind != ItemKind.INCOME or tx.is_recurring or tx.is_engine_generated:
                continue

            period = period_of(_as_utc(tx.occurred_at))
            document = await self._income.materializer.ensure_period(period)
            if self._is_duplicate(document, tx):
                report.extras_skipped += 1
                continue

            try:
                await self._income.add_extra(
                    period,
                    description=_legacy_name(tx) or "Income",
                    amount=tx.amount,
                    date=tx.occurred_at,
                    extra_id=tx.id,
                )
            except ValidationFailedError as e:
                report.extras_failed += 1
                logger.warning(
                    "legacy_extra_rejected",
                    period=period,
                    source_transaction_id=tx.id,
                    error=str(e),
                )
                continue
            report.extras_imported += 1

    def _is_duplicate(self, document: IncomePeriodDocument, tx: LedgerTransaction) -> bool:
        description = normalize_name(_legacy_name(tx) or "Income")
        occurred = _as_utc(tx.occurred_at)
        for extra in document.extras:
            if (
                normalize_name(extra.description) == description
                and abs(extra.amount - tx.amount) < AMOUNT_TOLERANCE
                and abs(_as_utc(extra.date) - occurred) <= self._date_tolerance
            ):
                return True
        return False
