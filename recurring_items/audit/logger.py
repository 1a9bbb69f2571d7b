"""
Audit Logger

DESIGN DECISION: Every state change that touches money is logged.
This provides:
1. Traceability from a period item to its ledger entry
2. A record of deferred remote writes while offline
3. Evidence for partial operations and the repairs that healed them

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the engine if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from recurring_items.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from recurring_items.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("recurring_items.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_template_saved(self, template_id: str, name: str, default_amount: Decimal, kind: str) -> None:
        await self.log(AuditEventBuilder.template_saved(
            template_id=template_id,
            name=name,
            default_amount=str(default_amount),
            kind=kind,
        ))

    async def log_template_deleted(self, template_id: str, kind: str) -> None:
        await self.log(AuditEventBuilder.template_deleted(template_id=template_id, kind=kind))

    async def log_period_materialized(
        self,
        period: str,
        kind: str,
        item_count: int,
        regenerated: bool = False,
    ) -> None:
        await self.log(AuditEventBuilder.period_materialized(
            period=period,
            kind=kind,
            item_count=item_count,
            regenerated=regenerated,
        ))

    async def log_item_paid(self, item_id: str, period: str, amount: Decimal, transaction_id: str) -> None:
        """Log a completed pay."""
        await self.log(AuditEventBuilder.item_paid(
            item_id=item_id,
            period=period,
            amount=str(amount),
            transaction_id=transaction_id,
        ))

    async def log_item_unpaid(self, item_id: str, period: str, transaction_id: str) -> None:
        """Log a completed undo."""
        await self.log(AuditEventBuilder.item_unpaid(
            item_id=item_id,
            period=period,
            transaction_id=transaction_id,
        ))

    async def log_item_skipped(self, item_id: str, period: str) -> None:
        await self.log(AuditEventBuilder.item_skipped(item_id=item_id, period=period))

    async def log_amount_updated(
        self,
        item_id: str,
        period: str,
        old_amount: Decimal,
        new_amount: Decimal,
        persisted_as_default: bool,
    ) -> None:
        await self.log(AuditEventBuilder.item_amount_updated(
            item_id=item_id,
            period=period,
            old_amount=str(old_amount),
            new_amount=str(new_amount),
            persisted_as_default=persisted_as_default,
        ))

    async def log_income_status_changed(self, item_id: str, period: str, status: str) -> None:
        await self.log(AuditEventBuilder.income_status_changed(
            item_id=item_id,
            period=period,
            status=status,
        ))

    async def log_extra_changed(
        self,
        event_type: AuditEventType,
        extra_id: str,
        period: str,
        amount: Optional[Decimal] = None,
    ) -> None:
        await self.log(AuditEventBuilder.extra_changed(
            event_type=event_type,
            extra_id=extra_id,
            period=period,
            amount=str(amount) if amount is not None else None,
        ))

    async def log_partial_operation(
        self,
        operation: str,
        item_id: str,
        period: str,
        transaction_id: Optional[str],
        error_message: str,
    ) -> None:
        """Log a pay/undo that left the ledger and the period out of step."""
        await self.log(AuditEventBuilder.partial_operation(
            operation=operation,
            item_id=item_id,
            period=period,
            transaction_id=transaction_id,
            error_message=error_message,
        ))

    async def log_item_repaired(
        self,
        item_id: str,
        period: str,
        reason: str,
        transaction_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.item_repaired(
            item_id=item_id,
            period=period,
            reason=reason,
            transaction_id=transaction_id,
        ))

    async def log_remote_write_deferred(self, collection: str, key: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.remote_write_deferred(
            collection=collection,
            key=key,
            error_message=error_message,
        ))

    async def log_migration_completed(
        self,
        templates_created: int,
        extras_imported: int,
        extras_skipped: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.migration_completed(
            templates_created=templates_created,
            extras_imported=extras_imported,
            extras_skipped=extras_skipped,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step action (e.g., a migration run).
    Pass it through all subsequent operations.
    """
    return uuid4()
