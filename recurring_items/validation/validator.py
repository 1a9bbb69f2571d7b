"""
Template and Amount Validation

Validation NEVER silently fixes issues. Errors block the operation
and are raised synchronously; warnings are returned for the caller
to show and are logged.

Two levels:
- Field checks: amount sign, name, anchor day vs. cadence
- Context checks: suspiciously large amounts, duplicate names among
  the templates already registered
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

import structlog

from recurring_items.config import get_settings
from recurring_items.exceptions import ValidationFailedError
from recurring_items.models.template import Cadence, FixedItemTemplate, normalize_name
from recurring_items.models.validation import ValidationIssue, ValidationResult


logger = structlog.get_logger(__name__)


class TemplateValidationError(ValidationFailedError):
    """A template failed validation; the result lists every issue."""

    def __init__(self, result: ValidationResult):
        messages = "; ".join(i.message for i in result.issues if i.severity == "error")
        super().__init__(f"Invalid template {result.subject}: {messages}")
        self.result = result


def validate_amount(value, field: str = "amount") -> Decimal:
    """
    Coerce and check a money amount.

    Raises ValidationFailedError for anything that is not a
    non-negative number with at most two decimal places.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationFailedError(f"Malformed {field}: {value!r}")
    if not amount.is_finite():
        raise ValidationFailedError(f"Malformed {field}: {value!r}")
    if amount < 0:
        raise ValidationFailedError(f"{field} cannot be negative: {amount}")
    if amount.as_tuple().exponent < -2:
        raise ValidationFailedError(f"{field} has more than two decimal places: {amount}")
    return amount


class TemplateValidator:
    """Validates templates before the registry persists them."""

    def __init__(self, max_reasonable_amount: Optional[Decimal] = None):
        self._max_amount = (
            max_reasonable_amount
            if max_reasonable_amount is not None
            else get_settings().app.max_reasonable_amount
        )

    def _check_fields(self, template: FixedItemTemplate) -> list[ValidationIssue]:
        issues = []

        if template.default_amount is None or template.default_amount < 0:
            issues.append(ValidationIssue(
                field="default_amount",
                issue_type="negative_amount",
                message=f"Default amount must be zero or more (got {template.default_amount})",
                severity="error",
                suggested_fix="Enter the usual amount as a positive number",
            ))

        if not template.display_name or not template.display_name.strip():
            issues.append(ValidationIssue(
                field="display_name",
                issue_type="missing",
                message="Template name is required",
                severity="error",
            ))

        upper = 7 if template.cadence == Cadence.WEEKLY else 31
        if not 1 <= template.anchor_day <= upper:
            issues.append(ValidationIssue(
                field="anchor_day",
                issue_type="out_of_range",
                message=(
                    f"Anchor day {template.anchor_day} is invalid for a "
                    f"{template.cadence.value} template (1-{upper})"
                ),
                severity="error",
            ))

        return issues

    def _check_context(
        self,
        template: FixedItemTemplate,
        existing: Iterable[FixedItemTemplate],
    ) -> list[ValidationIssue]:
        issues = []

        if template.default_amount is not None and template.default_amount > self._max_amount:
            issues.append(ValidationIssue(
                field="default_amount",
                issue_type="suspicious_value",
                message=f"Amount ({template.default_amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        name = normalize_name(template.display_name or "")
        for other in existing:
            if other.id != template.id and other.normalized_name == name:
                issues.append(ValidationIssue(
                    field="display_name",
                    issue_type="duplicate_name",
                    message=f"Another template is already called '{other.display_name}'",
                    severity="warning",
                ))
                break

        return issues

    def validate(
        self,
        template: FixedItemTemplate,
        existing: Iterable[FixedItemTemplate] = (),
    ) -> ValidationResult:
        """Run both levels; context checks only run on a structurally valid template."""
        issues = self._check_fields(template)
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._check_context(template, existing))

        result = ValidationResult(
            subject=template.id or template.display_name or "<unnamed>",
            issues=issues,
        )
        if result.warnings:
            logger.warning(
                "template_validation_warnings",
                subject=result.subject,
                warnings=result.warnings,
            )
        return result

    def ensure_valid(
        self,
        template: FixedItemTemplate,
        existing: Iterable[FixedItemTemplate] = (),
    ) -> ValidationResult:
        """Validate and raise TemplateValidationError on any error."""
        result = self.validate(template, existing)
        if result.has_errors:
            raise TemplateValidationError(result)
        return result
