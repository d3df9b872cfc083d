"""Tests for HouseholdService and the SQLite store."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from housesplit.config import Settings
from housesplit.exceptions import (
    ConcurrentMaterializationConflict,
    InvalidPayment,
    InvalidPaymentTransition,
    InvalidSplitConfig,
    RecordNotFoundError,
)
from housesplit.models import ChargeSpec, EqualAmongMembers, FixedAmounts, LineItem
from housesplit.scheduler import materialize
from housesplit.service import HouseholdService


class TestExpenses:
    """Creating expenses and split bills."""

    def test_create_expense_with_equal_split(self, service, household):
        expense = service.create_expense(
            "Groceries",
            Decimal("100.00"),
            "alice",
            participants=["alice", "bob", "carol"],
            expense_date=date(2024, 1, 10),
        )

        stored = household.get_expense(expense.id)
        assert stored == expense
        assert [s.amount for s in stored.splits] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]

    def test_invalid_split_writes_nothing(self, service, household):
        with pytest.raises(InvalidSplitConfig):
            service.create_expense(
                "Groceries",
                Decimal("100.00"),
                "alice",
                participants=["alice", "bob"],
                mode="percentage",
                params={"bob": Decimal("120")},
            )

        assert household.list_expenses() == []

    def test_preview_does_not_save(self, service, household):
        preview = service.preview_split_bill(
            [
                LineItem(participant="alice", unit_amount=Decimal("60.00")),
                LineItem(participant="bob", unit_amount=Decimal("40.00")),
            ],
            tax=ChargeSpec(percent=Decimal("10")),
        )

        assert preview.total == Decimal("110.00")
        assert household.list_expenses() == []

    def test_create_split_bill(self, service, household):
        expense = service.create_split_bill(
            "Dinner",
            "alice",
            [
                LineItem(participant="bob", unit_amount=Decimal("10.00")),
                LineItem(participant="alice", unit_amount=Decimal("10.00")),
                LineItem(participant="carol", unit_amount=Decimal("10.00")),
            ],
            tax=ChargeSpec(amount=Decimal("1.00")),
            expense_date=date(2024, 1, 12),
        )

        stored = household.get_expense(expense.id)
        assert stored.total_amount == Decimal("31.00")
        assert sum(s.amount for s in stored.splits) == Decimal("31.00")
        assert stored.share_of("alice") == Decimal("10.34")
        assert stored.notes == "Split bill - 3 people"

    def test_split_bill_with_tiny_items(self, service, household):
        expense = service.create_split_bill(
            "Sweets",
            "alice",
            [
                LineItem(participant="alice", unit_amount=Decimal("0.00")),
                LineItem(participant="bob", unit_amount=Decimal("0.01")),
                LineItem(participant="carol", unit_amount=Decimal("0.01")),
            ],
            tax=ChargeSpec(amount=Decimal("0.01")),
        )

        stored = household.get_expense(expense.id)
        assert stored.total_amount == Decimal("0.03")
        assert sum(s.amount for s in stored.splits) == Decimal("0.03")

    def test_quick_split_moves_payer_first(self, service):
        expense, distribution = service.quick_split(
            "Taxi",
            Decimal("100.00"),
            ["alice", "bob", "carol"],
            payer="carol",
            expense_date=date(2024, 1, 12),
        )

        assert distribution.total == Decimal("100.00")
        assert expense.payer == "carol"
        assert expense.share_of("carol") == Decimal("33.34")

    def test_list_expenses_filters(self, service, household):
        service.create_expense("A", Decimal("10"), "alice", expense_date=date(2024, 1, 1))
        service.create_expense(
            "B", Decimal("20"), "bob", ["bob", "carol"], expense_date=date(2024, 2, 1)
        )

        assert [e.description for e in household.list_expenses(start=date(2024, 1, 15))] == ["B"]
        assert [e.description for e in household.list_expenses(end=date(2024, 1, 15))] == ["A"]
        assert [e.description for e in household.list_expenses(participant="carol")] == ["B"]


class TestPayments:
    """Recording and confirming payments."""

    def test_auto_accepted_by_default(self, service):
        payment = service.record_payment("bob", "alice", Decimal("20"))

        assert payment.status == "confirmed"

    def test_pending_when_auto_accept_disabled(self, tmp_path, household):
        settings = Settings(database_path=tmp_path / "other.db", auto_accept_payments=False)
        service = HouseholdService(settings, household)

        payment = service.record_payment("bob", "alice", Decimal("20"))
        confirmed = service.confirm_payment(payment.id)

        assert payment.status == "pending"
        assert confirmed.status == "confirmed"
        assert household.get_payment(payment.id).status == "confirmed"

        with pytest.raises(InvalidPaymentTransition):
            service.reject_payment(payment.id)

    def test_cannot_pay_yourself(self, service):
        with pytest.raises(InvalidPayment, match="yourself"):
            service.record_payment("bob", "bob", Decimal("20"))

    def test_unknown_payment(self, service):
        with pytest.raises(RecordNotFoundError):
            service.confirm_payment("missing")


class TestBalances:
    """Balance views over the stored history."""

    def test_summary_and_transfers(self, service):
        service.create_expense("Groceries", Decimal("120.00"), "alice", expense_date=date(2024, 1, 1))

        summary = service.balance_summary()

        # Four members including the inactive one share the fair share
        assert summary.member_count == 4
        assert summary.fair_share == Decimal("30.00")
        assert [(t.from_participant, t.to_participant, t.amount) for t in summary.transfers] == [
            ("bob", "alice", Decimal("30.00")),
            ("carol", "alice", Decimal("30.00")),
            ("dave", "alice", Decimal("30.00")),
        ]

    def test_confirmed_payments_settle(self, service):
        service.create_expense("Groceries", Decimal("60.00"), "alice", expense_date=date(2024, 1, 1))
        for member in ("bob", "carol", "dave"):
            service.record_payment(member, "alice", Decimal("15.00"))

        summary = service.balance_summary()

        assert summary.fully_settled
        assert all(b.status == "settled" for b in summary.balances)

    def test_pairwise(self, service):
        service.create_expense(
            "Groceries",
            Decimal("90.00"),
            "alice",
            ["alice", "bob", "carol"],
            expense_date=date(2024, 1, 1),
        )
        service.record_payment("bob", "alice", Decimal("10.00"), paid_at=datetime(2024, 1, 2))

        balances = {b.counterparty: b for b in service.pairwise_balances("alice")}

        assert balances["bob"].net == Decimal("-20.00")
        assert balances["carol"].net == Decimal("-30.00")
        assert "dave" not in balances
        assert service.pairwise_balance("bob", "alice").net == Decimal("20.00")
        assert service.payment_balance("bob", "alice") == Decimal("10.00")


class TestEditing:
    """Editing stored expenses and recurring templates."""

    def test_update_expense_resplits_new_total(self, service, household):
        expense = service.create_expense(
            "Groceries",
            Decimal("90.00"),
            "alice",
            ["alice", "bob", "carol"],
            expense_date=date(2024, 1, 10),
        )

        updated = service.update_expense(expense.id, total=Decimal("100.00"), notes="receipt fixed")

        stored = household.get_expense(expense.id)
        assert stored == updated
        assert stored.total_amount == Decimal("100.00")
        assert [(s.participant, s.amount) for s in stored.splits] == [
            ("alice", Decimal("33.34")),
            ("bob", Decimal("33.33")),
            ("carol", Decimal("33.33")),
        ]
        assert stored.description == "Groceries"
        assert stored.notes == "receipt fixed"

    def test_update_expense_replaces_members(self, service, household):
        expense = service.create_expense(
            "Taxi", Decimal("30.00"), "alice", ["alice", "bob", "carol"]
        )

        service.update_expense(
            expense.id,
            participants=["bob", "carol"],
            mode="percentage",
            params={"carol": Decimal("25")},
        )

        stored = household.get_expense(expense.id)
        assert [(s.participant, s.amount) for s in stored.splits] == [
            ("bob", Decimal("22.50")),
            ("carol", Decimal("7.50")),
        ]
        assert len(household.list_expenses()) == 1

    def test_invalid_edit_keeps_stored_splits(self, service, household):
        expense = service.create_expense(
            "Taxi", Decimal("30.00"), "alice", ["alice", "bob"]
        )

        with pytest.raises(InvalidSplitConfig):
            service.update_expense(
                expense.id,
                participants=["alice", "bob"],
                mode="amount",
                params={"bob": Decimal("31.00")},
            )

        assert household.get_expense(expense.id) == expense

    def test_update_missing_expense(self, service):
        with pytest.raises(RecordNotFoundError):
            service.update_expense("missing", description="x")

    def test_update_template_moves_due_date_with_start(self, service, household):
        template = service.create_template(
            "Internet", Decimal("100.00"), "alice", "monthly", date(2024, 1, 31)
        )
        service.process_due(today=date(2024, 2, 1))

        updated = service.update_template(
            template.id,
            start_date=date(2024, 3, 15),
            amount=Decimal("120"),
            split_policy=EqualAmongMembers(members=["alice", "bob"]),
        )

        stored = household.get_template(template.id)
        assert stored == updated
        assert stored.next_due_date == date(2024, 3, 15)
        assert stored.amount == Decimal("120.00")
        assert stored.occurrences_created == 1
        assert stored.version == 2

        result = service.process_due(today=date(2024, 3, 15))
        assert [(s.participant, s.amount) for s in result.created[0].splits] == [
            ("alice", Decimal("60.00")),
            ("bob", Decimal("60.00")),
        ]

    def test_update_template_keeps_due_date_without_start_change(self, service, household):
        template = service.create_template(
            "Gym", Decimal("30.00"), "alice", "weekly", date(2024, 1, 1)
        )
        service.process_due(today=date(2024, 1, 1))

        updated = service.update_template(
            template.id, description="Gym membership", end_date=date(2024, 6, 30)
        )

        assert updated.next_due_date == date(2024, 1, 8)
        assert updated.description == "Gym membership"
        assert household.get_template(template.id).end_date == date(2024, 6, 30)

    def test_update_template_rejects_unknown_fields(self, service):
        template = service.create_template(
            "Gym", Decimal("30.00"), "alice", "weekly", date(2024, 1, 1)
        )

        with pytest.raises(TypeError, match="occurrences_created"):
            service.update_template(template.id, occurrences_created=0)

    def test_stale_template_edit_is_rejected(self, service, household):
        template = service.create_template(
            "Internet", Decimal("90.00"), "alice", "monthly", date(2024, 1, 1)
        )
        stale = household.get_template(template.id)
        service.process_due(today=date(2024, 1, 1))

        with pytest.raises(ConcurrentMaterializationConflict):
            household.update_template(
                stale.model_copy(update={"description": "Fibre"}), stale.version
            )

        stored = household.get_template(template.id)
        assert stored.description == "Internet"
        assert stored.next_due_date == date(2024, 2, 1)


class TestRecurring:
    """Processing recurring templates through the store."""

    def test_process_due_materializes_once_per_pass(self, service, household):
        template = service.create_template(
            "Internet", Decimal("100.00"), "bob", "monthly", date(2024, 1, 31)
        )

        first = service.process_due(today=date(2024, 3, 1))
        second = service.process_due(today=date(2024, 3, 1))
        third = service.process_due(today=date(2024, 3, 1))

        assert [e.date for e in first.created] == [date(2024, 1, 31)]
        assert [e.date for e in second.created] == [date(2024, 2, 29)]
        assert third.created == []

        stored = household.get_template(template.id)
        assert stored.next_due_date == date(2024, 3, 31)
        assert stored.occurrences_created == 2
        assert stored.version == 2

        # Inactive members are left out of equal splits; the payer absorbs the cent
        expense = first.created[0]
        assert [s.participant for s in expense.splits] == ["bob", "alice", "carol"]
        assert expense.share_of("bob") == Decimal("33.34")

    def test_catch_up_uses_freshly_advanced_dates(self, service, household):
        template = service.create_template(
            "Internet", Decimal("50.00"), "alice", "monthly", date(2024, 1, 31)
        )

        result = service.process_due(today=date(2024, 4, 30), catch_up=True)

        assert [e.date for e in result.created] == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]
        assert household.get_template(template.id).next_due_date == date(2024, 5, 31)
        assert len(household.list_expenses()) == 4

    def test_occurrence_cap(self, service, household):
        template = service.create_template(
            "Gym", Decimal("30.00"), "alice", "weekly", date(2024, 1, 1), max_occurrences=3
        )

        results = [service.process_due(today=date(2024, 2, 1)) for _ in range(4)]

        assert [len(r.created) for r in results] == [1, 1, 1, 0]
        assert results[2].deactivated == [template.id]
        stored = household.get_template(template.id)
        assert not stored.is_active
        assert stored.occurrences_created == 3

    def test_expired_template_is_deactivated_without_expense(self, service, household):
        template = service.create_template(
            "Magazine",
            Decimal("12.00"),
            "alice",
            "monthly",
            date(2024, 1, 1),
            end_date=date(2024, 1, 20),
        )

        result = service.process_due(today=date(2024, 2, 1))

        assert result.created == []
        assert result.deactivated == [template.id]
        assert not household.get_template(template.id).is_active

    def test_cancel_and_reactivate(self, service, household):
        template = service.create_template(
            "Internet", Decimal("100.00"), "alice", "monthly", date(2026, 1, 15)
        )
        service.process_due(today=date(2026, 1, 15))

        service.cancel_template(template.id)
        assert service.process_due(today=date(2026, 3, 1)).created == []

        reactivated = service.reactivate_template(template.id, today=date(2026, 6, 20))

        assert reactivated.is_active
        assert reactivated.next_due_date == date(2026, 7, 15)
        assert len(household.list_expenses()) == 1

    def test_invalid_policy_leaves_template_due(self, service, household):
        template = service.create_template(
            "Rent",
            Decimal("100.00"),
            "alice",
            "monthly",
            date(2024, 1, 1),
            split_policy=FixedAmounts(amounts={"alice": Decimal("0"), "bob": Decimal("500")}),
        )

        result = service.process_due(today=date(2024, 1, 1))

        assert result.created == []
        stored = household.get_template(template.id)
        assert stored.next_due_date == date(2024, 1, 1)
        assert stored.occurrences_created == 0

    def test_stale_version_rolls_back(self, service, household):
        """A second pass working from a stale read writes nothing."""
        template = service.create_template(
            "Internet", Decimal("90.00"), "alice", "monthly", date(2024, 1, 1)
        )
        stale = household.get_template(template.id)

        service.process_due(today=date(2024, 1, 1))
        expense, advanced = materialize(stale, date(2024, 1, 1), ["alice", "bob", "carol"])

        with pytest.raises(ConcurrentMaterializationConflict):
            household.record_occurrence(expense, advanced, stale.version)

        assert household.get_expense(expense.id) is None
        assert len(household.list_expenses()) == 1
        assert household.get_template(template.id).occurrences_created == 1

    def test_unknown_template(self, service):
        with pytest.raises(RecordNotFoundError):
            service.cancel_template("missing")
