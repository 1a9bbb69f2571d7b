"""
Template Models

A template is the user's declaration of something that recurs:
rent, salary, a streaming subscription. Templates never move money;
they are materialized into period items (see models.item).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from recurring_items.models.period import period_bounds, utc_now


PLACEHOLDER_PREFIX = "local_"


def is_placeholder_id(value: Optional[str]) -> bool:
    """Was this id generated while the remote tier was unreachable?"""
    return bool(value) and value.startswith(PLACEHOLDER_PREFIX)


def normalize_name(name: str) -> str:
    """Case and whitespace-insensitive form of a name, used for matching."""
    return " ".join(name.lower().split())


class ItemKind(str, Enum):
    """Which side of the books a template or item lives on."""
    EXPENSE = "expense"
    INCOME = "income"


class Cadence(str, Enum):
    """How often a template recurs."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class FixedItemTemplate(BaseModel):
    """
    A recurring item definition.

    anchor_day is the day of the month for monthly/yearly templates
    and the ISO weekday (1 = Monday) for weekly ones.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = Field(
        default=None,
        description="Assigned by the registry on first save"
    )
    display_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Name shown to the user"
    )
    default_amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount new periods start from"
    )
    category: str = Field(
        default="Other",
        min_length=1,
        max_length=100,
    )
    active: bool = True
    cadence: Cadence = Cadence.MONTHLY
    anchor_day: int = Field(
        default=1,
        ge=1,
        le=31,
        description="Day-of-period the item falls due"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_anchor_day(self) -> 'FixedItemTemplate':
        if self.cadence == Cadence.WEEKLY and self.anchor_day > 7:
            raise ValueError("Weekly templates need an ISO weekday (1-7) as anchor day")
        return self

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.display_name)

    def due_date_in(self, period: str) -> date:
        """Due date of this template's item inside the given period."""
        first, last = period_bounds(period)
        if self.cadence == Cadence.WEEKLY:
            offset = (self.anchor_day - first.isoweekday()) % 7
            return first.replace(day=first.day + offset)
        return first.replace(day=min(self.anchor_day, last.day))
