"""
Ledger Models

The ledger is the durable record of actual money movement. The engine
only creates and deletes entries; an item's "paid" state is trusted
only while its linked entry exists.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from recurring_items.models.period import utc_now
from recurring_items.models.template import Cadence, ItemKind


RECURRING_SOURCE = "recurring"
MANUAL_SOURCE = "manual"


class LedgerTransaction(BaseModel):
    """One money movement, as stored in the ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = None
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    kind: ItemKind
    category: str = "Other"
    description: str = Field(default="", max_length=500)
    occurred_at: datetime = Field(default_factory=utc_now)

    # Legacy entries marked recurring become templates during migration
    is_recurring: bool = False
    frequency: Optional[Cadence] = None
    source: str = Field(
        default=MANUAL_SOURCE,
        pattern="^(recurring|manual)$",
    )

    # Traceability back to the item that produced this entry
    template_id: Optional[str] = None
    item_id: Optional[str] = None
    period: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_engine_generated(self) -> bool:
        return self.source == RECURRING_SOURCE
