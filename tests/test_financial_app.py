"""
Integration tests for the FinanceApp service over a SQLite database.

Each mutation is checked through a fresh load from storage so the fund,
transactions and envelopes stay consistent end to end.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from database_ops import DatabaseManager
from debt_payoff import NoDebts, PayoffPlan
from exceptions import DatabaseError, InvalidInputError, OverAllocationError, UnknownEntityError
from models import Classification, ObligationStatus


@pytest.fixture
def funded_app(app):
    """App with a 2000 payroll deposit on March 1st."""
    app.deposit(2000, date(2024, 3, 1)).unwrap()
    return app


class TestFund:
    """Fund and transaction flows."""

    def test_deposit_updates_fund_and_envelope_pool(self, funded_app):
        status = funded_app.fund_status()

        assert status['balance'] == Decimal("2000")
        assert status['last_deposit_date'] == date(2024, 3, 1)
        assert status['discrepancy'] == Decimal("0")
        assert funded_app.load_envelopes().unassigned_money == Decimal("2000")

    def test_expense_is_withdrawn_and_linked(self, funded_app):
        result = funded_app.add_transaction("Supermercado", "125.01", "Alimentación")

        assert result.ok
        [stored] = funded_app.list_transactions()
        assert stored.fund_linked
        assert stored.date == date(2024, 3, 15)
        assert funded_app.fund_status()['balance'] == Decimal("1874.99")
        assert funded_app.load_envelopes().unassigned_money == Decimal("1874.99")

    def test_income_record_leaves_fund_alone(self, funded_app):
        funded_app.add_transaction("Venta bici", 40, "Extra", kind="income")

        assert funded_app.fund_status()['balance'] == Decimal("2000")
        assert not funded_app.list_transactions()[0].fund_linked

    def test_rejected_expense_changes_nothing(self, funded_app):
        result = funded_app.add_transaction("Nada", 0)

        assert not result.ok
        assert funded_app.list_transactions() == []
        assert funded_app.fund_status()['balance'] == Decimal("2000")

    def test_edit_and_delete_keep_fund_consistent(self, funded_app):
        funded_app.add_transaction("Cena", 80, "Restaurantes")
        transaction_id = funded_app.list_transactions()[0].id

        funded_app.edit_transaction(transaction_id, amount=50, concept="Cena amigos").unwrap()
        assert funded_app.fund_status()['balance'] == Decimal("1950")
        assert funded_app.list_transactions()[0].concept == "Cena amigos"

        funded_app.delete_transaction(transaction_id).unwrap()
        assert funded_app.fund_status()['balance'] == Decimal("2000")
        assert funded_app.list_transactions() == []
        assert funded_app.fund_status()['discrepancy'] == Decimal("0")

    def test_delete_unknown_transaction_is_noop(self, funded_app):
        result = funded_app.delete_transaction("txn_missing")
        assert result.ok and result.noop

    def test_failed_fund_write_rolls_back_the_expense(self, funded_app):
        with patch.object(DatabaseManager, "_write_fund_state", side_effect=SQLAlchemyError("disk I/O error")):
            with pytest.raises(DatabaseError):
                funded_app.add_transaction("Cine", 100, "Ocio")

        assert funded_app.list_transactions() == []
        status = funded_app.fund_status()
        assert status['balance'] == Decimal("2000")
        assert status['discrepancy'] == Decimal("0")

    def test_manual_balance_is_audited(self, funded_app):
        funded_app.set_balance("1980.50", "bank fees").unwrap()
        status = funded_app.fund_status()

        assert status['balance'] == Decimal("1980.50")
        assert status['adjustments'] == 1
        assert status['discrepancy'] == Decimal("0")

    def test_list_transactions_by_month(self, funded_app):
        funded_app.add_transaction("Febrero", 10, on_date=date(2024, 2, 20))
        funded_app.add_transaction("Marzo", 10, on_date=date(2024, 3, 2))

        assert [t.concept for t in funded_app.list_transactions("2024-03")] == ["Marzo"]


class TestEnvelopes:
    """Envelope flows over the stored fund."""

    def test_assign_and_spend_through_an_expense(self, funded_app):
        funded_app.assign_envelope("food", 300).unwrap()

        result = funded_app.add_transaction("Super", 320, "Supermercado", envelope_id="food")

        assert result.ok
        assert "Envelope 'Food' exceeded by 20" in result.warnings
        state = funded_app.load_envelopes()
        assert state.get("food").spent == Decimal("320")
        assert state.unassigned_money == Decimal("1380")
        assert state.total_assigned + state.unassigned_money == state.fund_balance

    def test_failed_envelope_write_rolls_back_expense_and_spend(self, funded_app):
        funded_app.assign_envelope("food", 300).unwrap()

        with patch.object(DatabaseManager, "_write_envelopes", side_effect=SQLAlchemyError("database is locked")):
            with pytest.raises(DatabaseError):
                funded_app.add_transaction("Super", 120, "Supermercado", envelope_id="food")

        assert funded_app.list_transactions() == []
        assert funded_app.fund_status()['balance'] == Decimal("2000")
        assert funded_app.load_envelopes().get("food").spent == Decimal("0")

    def test_over_allocation_is_not_persisted(self, funded_app):
        result = funded_app.assign_envelope("needs", 2500)

        assert isinstance(result.error, OverAllocationError)
        assert funded_app.load_envelopes().get("needs").assigned == Decimal("0")

    def test_custom_envelope_lifecycle(self, funded_app):
        state = funded_app.create_envelope("Vacation", "teal", "savings").unwrap()
        custom_id = state.envelopes[-1].id
        funded_app.assign_envelope(custom_id, 400).unwrap()
        funded_app.transfer_between_envelopes(custom_id, "leisure", 100).unwrap()

        funded_app.delete_envelope(custom_id).unwrap()

        state = funded_app.load_envelopes()
        assert state.get(custom_id) is None
        assert state.get("leisure").assigned == Decimal("100")
        assert state.unassigned_money == Decimal("1900")

    def test_auto_allocate_and_health(self, funded_app):
        funded_app.auto_allocate().unwrap()
        health = funded_app.envelope_health()

        assert health['assigned_total'] == Decimal("2000")
        assert health['unassigned_funds'] == Decimal("0")
        assert health['alerts'] == []

    def test_fund_shrinking_reports_over_assignment(self, funded_app):
        funded_app.assign_envelope("needs", 1000).unwrap()
        funded_app.set_balance(600, "correction").unwrap()

        health = funded_app.envelope_health()

        assert health['over_assigned'] == Decimal("400")
        assert health['unassigned_funds'] == Decimal("0")
        assert any("over-assigned" in alert for alert in health['alerts'])


class TestObligationsAndAnalysis:
    """Obligations, debt plans and the monthly analysis."""

    def test_invalid_obligation(self, app):
        result = app.add_obligation("Gym", 30, day_of_month=40)

        assert isinstance(result.error, InvalidInputError)
        assert app.list_obligations() == []

    def test_obligation_status_and_delete(self, app):
        gym = app.add_obligation("Gym", 30, day_of_month=5, category="Gimnasio").unwrap()

        paused = app.set_obligation_status(gym.id, "paused").unwrap()

        assert paused.status is ObligationStatus.PAUSED
        assert app.list_obligations()[0].status is ObligationStatus.PAUSED
        assert isinstance(app.set_obligation_status(gym.id, "forgotten").error, InvalidInputError)

        app.delete_obligation(gym.id).unwrap()
        assert app.list_obligations() == []

    def test_unknown_obligation_is_noop(self, app):
        for result in (app.set_obligation_status("fixed_missing", "ended"), app.delete_obligation("fixed_missing")):
            assert result.ok and result.noop
            assert isinstance(result.error, UnknownEntityError)

    def test_paused_obligation_leaves_month_summary(self, funded_app):
        rent = funded_app.add_obligation("Alquiler", 700, day_of_month=1, category="Alquiler").unwrap()
        funded_app.add_obligation("Spotify", "10.99", day_of_month=20, kind="subscription").unwrap()
        funded_app.add_transaction("Cine", 60, "Ocio", on_date=date(2024, 3, 10))
        funded_app.add_transaction("Venta", 40, kind="income", on_date=date(2024, 3, 5))

        summary = funded_app.month_summary("2024-03").unwrap()
        assert summary.income == Decimal("2040")
        assert summary.fixed_total == Decimal("710.99")
        assert summary.variable_total == Decimal("60")
        assert summary.remaining == Decimal("1269.01")

        funded_app.set_obligation_status(rent.id, ObligationStatus.PAUSED).unwrap()
        assert funded_app.month_summary("2024-03").unwrap().fixed_total == Decimal("10.99")

    def test_month_summary_rejects_bad_month(self, app):
        assert isinstance(app.month_summary("2024-13").error, InvalidInputError)

    def test_upcoming_charges_from_today(self, app):
        app.add_obligation("Alquiler", 700, day_of_month=1).unwrap()
        app.add_obligation("Seguro", 45, day_of_month=31).unwrap()
        app.add_obligation("Spotify", "10.99", day_of_month=20).unwrap()

        upcoming = app.upcoming_charges().unwrap()
        assert [(c.name, c.date) for c in upcoming] == [
            ("Spotify", date(2024, 3, 20)),
            ("Seguro", date(2024, 3, 31)),
        ]

        april = app.upcoming_charges("2024-04").unwrap()
        assert [c.date.day for c in april] == [1, 20, 30]

    def test_plan_debts(self, app):
        assert isinstance(app.plan_debts().state, NoDebts)

        app.add_obligation("Car loan", 100, kind="debt", installments_remaining=10, installments_total=24).unwrap()
        app.add_obligation("Phone", 50, category="Préstamo móvil", installments_remaining=4).unwrap()

        plan = app.plan_debts("snowball", 50).unwrap()

        assert isinstance(plan, PayoffPlan)
        assert plan.order == ["Phone", "Car loan"]
        assert plan.total_months == 8

    def test_analyze_month_uses_deposits_and_income(self, funded_app):
        funded_app.add_transaction("Venta", 40, kind="income", on_date=date(2024, 3, 5))
        funded_app.add_obligation("Alquiler", 700, category="Alquiler").unwrap()
        funded_app.add_transaction("Cine", 60, "Ocio", on_date=date(2024, 3, 10))
        funded_app.add_transaction("Old", 99, "Ocio", on_date=date(2024, 2, 10))

        result = funded_app.analyze_month("2024-03").unwrap()

        assert result.monthly_income == Decimal("2040")
        assert result.totals[Classification.NEEDS] == Decimal("700")
        assert result.totals[Classification.WANTS] == Decimal("60")
        assert result.projection is not None


class TestGoals:
    """Goal flows."""

    def test_goal_lifecycle(self, app):
        goal = app.create_goal("Trip", 900, "2024-09").unwrap()

        result = app.contribute_to_goal(goal.id, 450, source="leisure")

        assert result.warnings == ["Goal 'Trip' reached 25%", "Goal 'Trip' reached 50%"]
        [stored] = app.list_goals()
        assert stored.progress == Decimal("450")
        assert app.goal_stats(stored).required_monthly_contribution == Decimal("75.00")

        app.delete_goal(goal.id).unwrap()
        assert app.list_goals() == []

    def test_goal_suggestions(self, funded_app):
        funded_app.assign_envelope("leisure", 150).unwrap()
        assert [s.envelope_id for s in funded_app.goal_suggestions()] == ["leisure"]


class TestSnapshots:
    """Export/import through the service."""

    def test_export_import_restores_state(self, funded_app, tmp_path):
        funded_app.add_transaction("Super", 100, "Supermercado")
        funded_app.assign_envelope("food", 250).unwrap()
        funded_app.create_goal("Trip", 900).unwrap()
        export_file = tmp_path / "export.json"
        text = funded_app.export_snapshot(export_file)
        assert export_file.read_text(encoding="utf-8") == text

        funded_app.deposit(500).unwrap()
        funded_app.add_transaction("Later", 20)

        result = funded_app.import_snapshot(text)

        assert result.ok, result.error
        assert funded_app.fund_status()['balance'] == Decimal("1900")
        assert [t.concept for t in funded_app.list_transactions()] == ["Super"]
        assert funded_app.load_envelopes().get("food").assigned == Decimal("250")
        assert len(funded_app.list_goals()) == 1
        backups = list((tmp_path / "backups").glob("finance_backup_*.db"))
        assert len(backups) == 1
        assert any(str(backups[0]) in warning for warning in result.warnings)

    def test_rejected_import_changes_nothing(self, funded_app, tmp_path):
        result = funded_app.import_snapshot('{"schema_version": 2}')

        assert not result.ok
        assert funded_app.fund_status()['balance'] == Decimal("2000")
        assert not (tmp_path / "backups").exists()
