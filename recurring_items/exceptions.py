"""
Domain Exceptions

Validation problems are raised synchronously to the caller.
Remote-tier problems never surface here; they are downgraded to
warnings by the store (see services.storage).
"""

from typing import Optional


class RecurringItemError(Exception):
    """Base class for engine-level errors."""

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or self.__class__.__name__


class ValidationFailedError(RecurringItemError):
    """Input is malformed (amount, period key, template fields)."""


class AuthenticationRequiredError(ValidationFailedError):
    """No user context to scope the data to."""


class NotFoundError(RecurringItemError):
    """Raised when an entity is not found."""


class ItemNotFoundError(NotFoundError):
    """No item with this id in the period."""

    def __init__(self, period: str, item_id: str):
        super().__init__(f"Item {item_id} not found in period {period}")
        self.period = period
        self.item_id = item_id


class TemplateNotFoundError(NotFoundError):
    """No template with this id."""

    def __init__(self, template_id: str):
        super().__init__(f"Template not found: {template_id}")
        self.template_id = template_id


class InvalidTransitionError(RecurringItemError):
    """The requested status change is not in the transition table."""

    def __init__(self, item_id: str, current: str, requested: str):
        super().__init__(
            f"Item {item_id} cannot move from '{current}' to '{requested}'"
        )
        self.item_id = item_id
        self.current = current
        self.requested = requested


class PartialOperationError(RecurringItemError):
    """
    Ledger and item state disagree after a failed step.

    The repair pass (engine.repair) brings them back in line.
    """

    def __init__(self, message: str, *, period: str, item_id: str, transaction_id: Optional[str]):
        super().__init__(message)
        self.period = period
        self.item_id = item_id
        self.transaction_id = transaction_id
