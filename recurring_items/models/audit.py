"""
Audit Models

Every money-moving or state-changing step of the engine is logged.
This provides:
1. Traceability of pay/undo back to the ledger entry they touched
2. Debugging information when the two tiers disagree
3. Evidence for the repair pass when it heals an item

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from recurring_items.models.period import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Templates
    TEMPLATE_SAVED = "template_saved"
    TEMPLATE_DELETED = "template_deleted"

    # Periods
    PERIOD_MATERIALIZED = "period_materialized"
    PERIOD_REGENERATED = "period_regenerated"

    # Expense items
    ITEM_PAID = "item_paid"
    ITEM_UNPAID = "item_unpaid"
    ITEM_SKIPPED = "item_skipped"
    ITEM_AMOUNT_UPDATED = "item_amount_updated"

    # Income items
    INCOME_STATUS_CHANGED = "income_status_changed"
    EXTRA_ADDED = "extra_added"
    EXTRA_EDITED = "extra_edited"
    EXTRA_DELETED = "extra_deleted"

    # Consistency
    PARTIAL_OPERATION = "partial_operation"
    ITEM_REPAIRED = "item_repaired"
    REMOTE_WRITE_DEFERRED = "remote_write_deferred"

    # Migration
    MIGRATION_COMPLETED = "migration_completed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'template', 'item', 'period')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    period: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one migration run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "period": self.period,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         period, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.period or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.item_paid(item_id, period, amount, tx_id)
        event = AuditEventBuilder.template_saved(template_id, name, amount)
    """

    @staticmethod
    def template_saved(
        template_id: str,
        name: str,
        default_amount: str,
        kind: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_SAVED,
            entity_type="template",
            entity_id=template_id,
            description=f"Template saved: {name}",
            details={
                "default_amount": default_amount,
                "kind": kind,
            },
        )

    @staticmethod
    def template_deleted(template_id: str, kind: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_DELETED,
            entity_type="template",
            entity_id=template_id,
            description=f"Template deleted: {template_id}",
            details={"kind": kind},
        )

    @staticmethod
    def period_materialized(
        period: str,
        kind: str,
        item_count: int,
        regenerated: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.PERIOD_REGENERATED
                if regenerated
                else AuditEventType.PERIOD_MATERIALIZED
            ),
            entity_type="period",
            entity_id=period,
            period=period,
            description=f"{kind.capitalize()} period {period} materialized with {item_count} items",
            details={
                "kind": kind,
                "item_count": item_count,
            },
        )

    @staticmethod
    def item_paid(
        item_id: str,
        period: str,
        amount: str,
        transaction_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_PAID,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description=f"Item paid: {amount}",
            details={
                "amount": amount,
                "transaction_id": transaction_id,
            },
        )

    @staticmethod
    def item_unpaid(
        item_id: str,
        period: str,
        transaction_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_UNPAID,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description="Payment undone",
            details={"transaction_id": transaction_id},
        )

    @staticmethod
    def item_skipped(item_id: str, period: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_SKIPPED,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description="Item skipped for this period",
        )

    @staticmethod
    def item_amount_updated(
        item_id: str,
        period: str,
        old_amount: str,
        new_amount: str,
        persisted_as_default: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_AMOUNT_UPDATED,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description=f"Amount changed from {old_amount} to {new_amount}",
            details={
                "old_amount": old_amount,
                "new_amount": new_amount,
                "persisted_as_default": persisted_as_default,
            },
        )

    @staticmethod
    def income_status_changed(item_id: str, period: str, status: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INCOME_STATUS_CHANGED,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description=f"Income marked as {status}",
            details={"status": status},
        )

    @staticmethod
    def extra_changed(
        event_type: AuditEventType,
        extra_id: str,
        period: str,
        amount: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="extra",
            entity_id=extra_id,
            period=period,
            description=f"Extra income {event_type.value.split('_')[-1]}",
            details={"amount": amount} if amount is not None else {},
        )

    @staticmethod
    def partial_operation(
        operation: str,
        item_id: str,
        period: str,
        transaction_id: Optional[str],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTIAL_OPERATION,
            severity=AuditSeverity.CRITICAL,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description=f"{operation} left ledger and item out of step",
            details={
                "operation": operation,
                "transaction_id": transaction_id,
            },
            error_message=error_message,
        )

    @staticmethod
    def item_repaired(
        item_id: str,
        period: str,
        reason: str,
        transaction_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_REPAIRED,
            severity=AuditSeverity.WARNING,
            entity_type="item",
            entity_id=item_id,
            period=period,
            description=f"Item healed against the ledger: {reason}",
            details={
                "reason": reason,
                "transaction_id": transaction_id,
            },
        )

    @staticmethod
    def remote_write_deferred(
        collection: str,
        key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_WRITE_DEFERRED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            entity_id=key,
            description="Remote write deferred to the outbox",
            error_message=error_message,
        )

    @staticmethod
    def migration_completed(
        templates_created: int,
        extras_imported: int,
        extras_skipped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MIGRATION_COMPLETED,
            entity_type="migration",
            correlation_id=correlation_id,
            description=(
                f"Legacy migration: {templates_created} templates, "
                f"{extras_imported} extras imported"
            ),
            details={
                "templates_created": templates_created,
                "extras_imported": extras_imported,
                "extras_skipped": extras_skipped,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
