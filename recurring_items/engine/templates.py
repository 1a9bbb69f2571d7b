"""
Template Registry

CRUD over the user's recurring-item definitions, one registry per side
(expense or income). There is no lifecycle here: a template is either
stored or not, and active or not.

Deleting a template never touches periods that were already
materialized from it.
"""

from typing import Iterable, Optional

import structlog
from pydantic import ValidationError

from recurring_items.audit import AuditLogger
from recurring_items.exceptions import TemplateNotFoundError
from recurring_items.models.period import utc_now
from recurring_items.models.template import FixedItemTemplate, ItemKind, normalize_name
from recurring_items.models.validation import ValidationIssue, ValidationResult
from recurring_items.services.storage.dual_tier import DualTierStore
from recurring_items.validation import TemplateValidationError, TemplateValidator


logger = structlog.get_logger(__name__)


def templates_collection(kind: ItemKind) -> str:
    return f"{kind.value}_templates"


class TemplateRegistry:
    """Keyed set of FixedItemTemplates for one ItemKind."""

    def __init__(
        self,
        store: DualTierStore,
        kind: ItemKind,
        validator: Optional[TemplateValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._kind = kind
        self._collection = templates_collection(kind)
        self._validator = validator or TemplateValidator()
        self._audit = audit_logger or AuditLogger()

    @property
    def kind(self) -> ItemKind:
        return self._kind

    @property
    def store(self) -> DualTierStore:
        return self._store

    async def get(self, template_id: str) -> Optional[FixedItemTemplate]:
        raw = await self._store.read(self._collection, template_id)
        return FixedItemTemplate.model_validate(raw) if raw else None

    async def upsert(self, template: FixedItemTemplate) -> FixedItemTemplate:
        """
        Validate and persist a template.

        Assigns an id on first save, keeps the original created_at and
        stamps updated_at.

        Raises:
            TemplateValidationError: If the template has any error-level issue
        """
        existing = await self.list()
        self._validator.ensure_valid(template, existing)
        template = self._revalidate(template)

        previous = None
        if template.id:
            previous = next((t for t in existing if t.id == template.id), None)
        template_id = template.id or await self._store.new_id(self._collection)

        saved = template.model_copy(update={
            "id": template_id,
            "created_at": previous.created_at if previous else template.created_at,
            "updated_at": utc_now(),
        })
        ack = await self._store.write(self._collection, template_id, saved.model_dump(mode="json"))

        logger.info(
            "template_saved",
            template_id=template_id,
            kind=self._kind.value,
            created=previous is None,
            remote_synced=ack.remote_synced,
        )
        await self._audit.log_template_saved(
            template_id=template_id,
            name=saved.display_name,
            default_amount=saved.default_amount,
            kind=self._kind.value,
        )
        return saved

    async def update(self, template_id: str, **changes) -> FixedItemTemplate:
        """Partial update of an existing template."""
        current = await self.get(template_id)
        if current is None:
            raise TemplateNotFoundError(template_id)
        changes.pop("id", None)
        return await self.upsert(current.model_copy(update=changes))

    async def set_active(self, template_id: str, active: bool) -> FixedItemTemplate:
        return await self.update(template_id, active=active)

    async def delete(self, template_id: str) -> bool:
        if await self.get(template_id) is None:
            return False
        await self._store.delete(self._collection, template_id)
        logger.info("template_deleted", template_id=template_id, kind=self._kind.value)
        await self._audit.log_template_deleted(template_id=template_id, kind=self._kind.value)
        return True

    async def find_by_name(self, name: str) -> Optional[FixedItemTemplate]:
        """Case- and whitespace-insensitive lookup."""
        wanted = normalize_name(name)
        for template in await self.list():
            if template.normalized_name == wanted:
                return template
        return None

    def _revalidate(self, template: FixedItemTemplate) -> FixedItemTemplate:
        # model_copy(update=...) skips field validation
        try:
            return FixedItemTemplate.model_validate(template.model_dump())
        except ValidationError as e:
            raise TemplateValidationError(ValidationResult(
                subject=template.id or template.display_name or "<unnamed>",
                issues=[
                    ValidationIssue(
                        field=".".join(str(part) for part in error["loc"]) or "template",
                        issue_type=error["type"],
                        message=error["msg"],
                        severity="error",
                    )
                    for error in e.errors()
                ],
            ))

    @staticmethod
    def _sorted(templates: Iterable[FixedItemTemplate]) -> list[FixedItemTemplate]:
        return sorted(templates, key=lambda t: (t.created_at, t.normalized_name))

    # Defined last: inside the class body this name shadows the builtin
    async def list(self, active_only: bool = False) -> list[FixedItemTemplate]:
        """All templates of this side, oldest first."""
        raw = await self._store.read_all(self._collection)
        templates = [FixedItemTemplate.model_validate(value) for value in raw.values()]
        if active_only:
            templates = [t for t in templates if t.active]
        return self._sorted(templates)
