"""
Period Materializer

Turns the active templates of one side into the items of a period.

CRITICAL: Materialization is idempotent. A period document is created
exactly once, on first access, and every later call returns it
unchanged. Item ids are derived from (template_id, period), so two
processes racing to create the same period write identical ids and
last-write-wins converges.

State per period: absent -> materializing -> materialized.
"""

import asyncio
from enum import Enum
from typing import Iterable, Optional

import structlog

from recurring_items.audit import AuditLogger
from recurring_items.engine.templates import TemplateRegistry
from recurring_items.exceptions import ValidationFailedError
from recurring_items.models.item import DOCUMENT_TYPES, ITEM_TYPES, IncomePeriodDocument, PeriodDocument
from recurring_items.models.period import validate_period_key
from recurring_items.models.template import FixedItemTemplate, ItemKind
from recurring_items.services.storage.dual_tier import DualTierStore, WriteAck


logger = structlog.get_logger(__name__)


def periods_collection(kind: ItemKind) -> str:
    return f"{kind.value}_periods"


class PeriodState(str, Enum):
    ABSENT = "absent"
    MATERIALIZING = "materializing"
    MATERIALIZED = "materialized"


class PeriodMaterializer:
    """
    Produces or retrieves the period documents of one side.

    Concurrent ensure_period calls for the same period in this process
    share one materialization.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        store: Optional[DualTierStore] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._registry = registry
        self._store = store or registry.store
        self._kind = registry.kind
        self._collection = periods_collection(self._kind)
        self._document_type = DOCUMENT_TYPES[self._kind]
        self._item_type = ITEM_TYPES[self._kind]
        self._audit = audit_logger or AuditLogger()
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def kind(self) -> ItemKind:
        return self._kind

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    @property
    def store(self) -> DualTierStore:
        return self._store

    @staticmethod
    def _check_period(period: str) -> None:
        try:
            validate_period_key(period)
        except ValueError as e:
            raise ValidationFailedError(str(e), code="invalid_period")

    async def get_period(self, period: str) -> Optional[PeriodDocument]:
        """Read a period document without creating it."""
        self._check_period(period)
        raw = await self._store.read(self._collection, period)
        return self._document_type.model_validate(raw) if raw else None

    async def period_state(self, period: str) -> PeriodState:
        if period in self._in_flight:
            return PeriodState.MATERIALIZING
        if await self.get_period(period) is not None:
            return PeriodState.MATERIALIZED
        return PeriodState.ABSENT

    async def save_period(self, document: PeriodDocument) -> WriteAck:
        return await self._store.write(
            self._collection,
            document.period,
            document.model_dump(mode="json"),
        )

    def discard_period(self, period: str) -> bool:
        """Drop the locally cached copy of a period document."""
        return self._store.invalidate(self._collection, period)

    async def ensure_period(
        self,
        period: str,
        templates: Optional[Iterable[FixedItemTemplate]] = None,
        force_regenerate: bool = False,
    ) -> PeriodDocument:
        """
        Return the period document, materializing it on first access.

        Args:
            period: YYYY-MM key
            templates: Template snapshot to use instead of reading the
                      registry (for callers that just changed templates)
            force_regenerate: Rebuild the document even if one exists.
                      Settled items and income extras are carried over.
        """
        self._check_period(period)
        snapshot = list(templates) if templates is not None else None

        task = self._in_flight.get(period)
        if task is None or force_regenerate:
            task = asyncio.ensure_future(self._materialize(period, snapshot, force_regenerate))
            self._in_flight[period] = task
            task.add_done_callback(lambda done: self._forget(period, done))

        document = await asyncio.shield(task)
        # Coalesced callers must not share one mutable document
        return document.model_copy(deep=True)

    def _forget(self, period: str, task: asyncio.Task) -> None:
        if self._in_flight.get(period) is task:
            del self._in_flight[period]

    async def _materialize(
        self,
        period: str,
        templates: Optional[list[FixedItemTemplate]],
        force_regenerate: bool,
    ) -> PeriodDocument:
        previous = await self.get_period(period)
        if previous is not None and not force_regenerate:
            return previous

        if force_regenerate:
            self.discard_period(period)

        if templates is None:
            templates = await self._registry.list(active_only=True)

        active: dict[str, FixedItemTemplate] = {}
        for template in templates:
            if not template.active:
                continue
            if not template.id:
                raise ValidationFailedError(
                    f"Template {template.display_name!r} must be saved before it can be materialized"
                )
            active[template.id] = template

        items = []
        carried = 0
        for template_id, template in active.items():
            kept = previous.item_for_template(template_id) if previous else None
            if kept is not None and kept.status.value != "pending":
                items.append(kept)
                carried += 1
            else:
                items.append(self._item_type.from_template(template, period))

        fields = {"period": period, "items": items}
        if isinstance(previous, IncomePeriodDocument):
            fields["extras"] = previous.extras
        document = self._document_type(**fields)

        ack = await self.save_period(document)
        logger.info(
            "period_materialized",
            period=period,
            kind=self._kind.value,
            item_count=len(items),
            regenerated=previous is not None,
            carried_over=carried,
            remote_synced=ack.remote_synced,
        )
        await self._audit.log_period_materialized(
            period=period,
            kind=self._kind.value,
            item_count=len(items),
            regenerated=previous is not None,
        )
        return document
