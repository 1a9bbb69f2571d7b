"""
Tests for the period materializer.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from recurring_items.engine import PeriodState
from recurring_items.exceptions import ValidationFailedError
from recurring_items.models import AuditEventType, ExpenseStatus, IncomeStatus, make_item_id


class TestEnsurePeriod:
    """Tests for idempotent materialization."""

    async def test_materializes_active_templates(self, expense_periods, rent):
        document = await expense_periods.ensure_period("2025-03")
        assert len(document.items) == 1
        item = document.items[0]
        assert item.id == make_item_id(rent.id, "2025-03")
        assert item.status == ExpenseStatus.PENDING
        assert item.amount == Decimal("1000")
        assert item.category == "Housing"
        assert item.name_snapshot == "Rent"
        assert item.due_date == date(2025, 3, 1)

    async def test_idempotent(self, expense_periods, rent, new_template, expense_registry):
        await expense_registry.upsert(new_template("Internet", "50", anchor_day=15))
        first = await expense_periods.ensure_period("2025-03")
        second = await expense_periods.ensure_period("2025-03")
        assert [(i.id, i.amount, i.status) for i in first.items] == [
            (i.id, i.amount, i.status) for i in second.items
        ]
        assert first.initialized_at == second.initialized_at

    async def test_item_id_combines_template_and_period(self, expense_periods, rent):
        document = await expense_periods.ensure_period("2025-03")
        assert document.items[0].id == f"{rent.id}_2025-03"

    async def test_invalid_period_rejected(self, expense_periods):
        with pytest.raises(ValidationFailedError):
            await expense_periods.ensure_period("2025-3")

    async def test_existing_period_ignores_template_changes(self, expense_periods, expense_registry, rent):
        await expense_periods.ensure_period("2025-03")
        await expense_registry.update(rent.id, default_amount=Decimal("2000"))

        document = await expense_periods.ensure_period("2025-03")
        assert document.items[0].amount == Decimal("1000")
        assert (await expense_periods.ensure_period("2025-04")).items[0].amount == Decimal("2000")

    async def test_deactivation_only_affects_new_periods(self, expense_periods, expense_registry, rent):
        await expense_periods.ensure_period("2025-03")
        await expense_registry.set_active(rent.id, False)

        assert len((await expense_periods.ensure_period("2025-03")).items) == 1
        assert (await expense_periods.ensure_period("2025-04")).items == []

    async def test_caller_snapshot_bypasses_registry(self, expense_periods, expense_registry, rent, new_template):
        internet = await expense_registry.upsert(new_template("Internet", "50"))
        document = await expense_periods.ensure_period("2025-03", templates=[internet])
        assert [item.template_id for item in document.items] == [internet.id]

    async def test_snapshot_skips_inactive_and_requires_ids(self, expense_periods, rent, new_template):
        inactive = rent.model_copy(update={"active": False})
        assert (await expense_periods.ensure_period("2025-03", templates=[inactive])).items == []

        with pytest.raises(ValidationFailedError, match="must be saved"):
            await expense_periods.ensure_period("2025-04", templates=[new_template("Unsaved", "1")])

    async def test_period_state(self, expense_periods, rent):
        assert await expense_periods.period_state("2025-03") == PeriodState.ABSENT
        await expense_periods.ensure_period("2025-03")
        assert await expense_periods.period_state("2025-03") == PeriodState.MATERIALIZED

    async def test_get_period_never_creates(self, expense_periods, rent):
        assert await expense_periods.get_period("2025-03") is None
        assert await expense_periods.period_state("2025-03") == PeriodState.ABSENT

    async def test_concurrent_calls_share_one_materialization(self, expense_periods, rent, audit_storage):
        documents = await asyncio.gather(*(expense_periods.ensure_period("2025-03") for _ in range(5)))

        assert len({tuple(item.id for item in d.items) for d in documents}) == 1
        materialized = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.PERIOD_MATERIALIZED and e.period == "2025-03"
        ]
        assert len(materialized) == 1

    async def test_offline_materialization_is_local(self, expense_periods, rent, remote):
        remote.online = False
        document = await expense_periods.ensure_period("2025-03")
        assert len(document.items) == 1
        assert remote.peek("test-user/expense_periods", "2025-03") is None

        remote.online = True
        await expense_periods.store.flush_outbox()
        assert remote.peek("test-user/expense_periods", "2025-03")["period"] == "2025-03"


class TestForcedRegeneration:
    """Tests for force_regenerate."""

    async def test_new_templates_picked_up(self, expense_periods, expense_registry, rent, new_template):
        await expense_periods.ensure_period("2025-03")
        internet = await expense_registry.upsert(new_template("Internet", "50"))

        document = await expense_periods.ensure_period("2025-03", force_regenerate=True)
        assert {item.template_id for item in document.items} == {rent.id, internet.id}

    async def test_settled_items_carried_over(self, expense_periods, expense_registry, expenses, rent):
        await expense_periods.ensure_period("2025-03")
        paid = await expenses.pay("2025-03", f"{rent.id}_2025-03", Decimal("1050"))
        await expense_registry.update(rent.id, default_amount=Decimal("1200"))

        document = await expense_periods.ensure_period("2025-03", force_regenerate=True)
        item = document.find_item(paid.id)
        assert item.status == ExpenseStatus.PAID
        assert item.linked_transaction_id == paid.linked_transaction_id
        assert item.amount == Decimal("1050")

    async def test_pending_items_rebuilt_from_templates(self, expense_periods, expense_registry, rent):
        await expense_periods.ensure_period("2025-03")
        await expense_registry.update(rent.id, default_amount=Decimal("1200"))

        document = await expense_periods.ensure_period("2025-03", force_regenerate=True)
        assert document.items[0].amount == Decimal("1200")

    async def test_regeneration_is_audited(self, expense_periods, rent, audit_storage):
        await expense_periods.ensure_period("2025-03")
        await expense_periods.ensure_period("2025-03", force_regenerate=True)
        assert any(e.event_type == AuditEventType.PERIOD_REGENERATED for e in audit_storage.events)

    async def test_income_extras_and_receipts_kept(self, income_periods, income, salary):
        await income.toggle_received("2025-03", f"{salary.id}_2025-03", IncomeStatus.RECEIVED)
        extra = await income.add_extra(
            "2025-03", "Gift", "25", date=datetime(2025, 3, 5, tzinfo=timezone.utc)
        )

        document = await income_periods.ensure_period("2025-03", force_regenerate=True)
        assert document.find_extra(extra.id) is not None
        assert document.items[0].status == IncomeStatus.RECEIVED
