"""Validation package."""

from recurring_items.validation.validator import (
    TemplateValidationError,
    TemplateValidator,
    validate_amount,
)

__all__ = ["TemplateValidationError", "TemplateValidator", "validate_amount"]
