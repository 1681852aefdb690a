"""
Unit tests for the spending distribution analyzer.
"""

from datetime import date
from decimal import Decimal

import pytest

from distribution_analysis import (
    DistributionAnalyzer,
    SuggestionLevel,
    build_inputs,
    monthly_income_for,
)
from exceptions import InvalidInputError
from models import (
    Classification,
    ObligationKind,
    ObligationStatus,
    RecurringObligation,
    Transaction,
    TransactionKind,
)


@pytest.fixture
def analyzer():
    """Analyzer with default thresholds and keyword table."""
    return DistributionAnalyzer()


@pytest.fixture
def balanced_month():
    """Rent, two wants and an amount tagged as savings."""
    return [
        {"category": "Alquiler", "amount": 700},
        {"category": "Netflix", "amount": 15},
        {"category": "Ocio", "amount": 300},
        {"category": "Ahorro", "amount": 400},
    ]


class TestAnalyze:
    """Tests for DistributionAnalyzer.analyze."""

    def test_classifies_and_computes_percentages(self, analyzer, balanced_month):
        result = analyzer.analyze(2000, balanced_month)

        assert result.ok
        analysis = result.state
        assert analysis.totals[Classification.NEEDS] == Decimal("700")
        assert analysis.totals[Classification.WANTS] == Decimal("315")
        assert analysis.totals[Classification.DEBT] == Decimal("0")
        assert analysis.percentages[Classification.NEEDS] == Decimal("35")
        assert analysis.percentages[Classification.WANTS] == Decimal("15.75")

    def test_savings_is_the_residual(self, analyzer, balanced_month):
        """Amounts tagged as savings are reported apart and not counted."""
        analysis = analyzer.analyze(2000, balanced_month).state

        assert analysis.totals[Classification.SAVINGS] == Decimal("985")
        assert analysis.percentages[Classification.SAVINGS] == Decimal("49.25")
        assert analysis.ignored_savings_total == Decimal("400")

    def test_balanced_month_gets_single_success_message(self, analyzer, balanced_month):
        analysis = analyzer.analyze(2000, balanced_month).state

        assert analysis.target_model == {
            Classification.NEEDS: Decimal("50"),
            Classification.WANTS: Decimal("30"),
            Classification.SAVINGS: Decimal("20"),
        }
        assert len(analysis.suggestions) == 1
        assert analysis.suggestions[0].level is SuggestionLevel.SUCCESS
        assert analysis.deviation(Classification.NEEDS) == Decimal("-15")
        assert analysis.deviation(Classification.DEBT) is None

    def test_spending_capacity(self, analyzer, balanced_month):
        analysis = analyzer.analyze(2000, balanced_month).state

        assert analysis.available_now == Decimal("985")
        assert analysis.available_to_spend == Decimal("785")
        assert analysis.overspend.alert == "normal"
        assert not analysis.overspend.is_overspent

    def test_debt_switches_model_and_raises_critical_suggestions(self, analyzer):
        items = [
            {"category": "Alquiler", "amount": 650},
            {"category": "Préstamo coche", "amount": 350},
            {"category": "Netflix", "amount": 100},
        ]
        analysis = analyzer.analyze(1000, items).state

        assert analysis.target_model[Classification.DEBT] == Decimal("30")
        assert analysis.totals[Classification.SAVINGS] == Decimal("0")
        levels = [(s.level, s.bucket) for s in analysis.suggestions]
        assert levels == [
            (SuggestionLevel.CRITICAL, Classification.NEEDS),
            (SuggestionLevel.CRITICAL, Classification.SAVINGS),
        ]
        assert analysis.suggestions[0].amount == Decimal("150.00")
        assert analysis.suggestions[1].amount == Decimal("100.00")

    def test_overspend_critical(self, analyzer):
        items = [
            {"category": "Alquiler", "amount": 650},
            {"category": "Préstamo coche", "amount": 350},
            {"category": "Netflix", "amount": 100},
        ]
        overspend = analyzer.analyze(1000, items).state.overspend

        assert overspend.is_overspent
        assert overspend.alert == "critico"
        assert overspend.remaining == Decimal("-100")
        assert overspend.percent_spent == Decimal("110")

    def test_overspend_warning_band(self, analyzer):
        analysis = analyzer.analyze(1000, [{"category": "Misc", "amount": 900}]).state

        assert analysis.totals[Classification.UNCLASSIFIED] == Decimal("900")
        assert analysis.overspend.alert == "advertencia"
        assert analysis.suggestions[0].bucket is Classification.SAVINGS

    def test_wants_over_target_is_a_warning(self, analyzer):
        analysis = analyzer.analyze(1000, [{"category": "Ocio", "amount": 450}]).state

        assert [s.level for s in analysis.suggestions] == [SuggestionLevel.WARNING]
        assert analysis.suggestions[0].amount == Decimal("150.00")

    def test_accepts_objects_and_legacy_keys(self, analyzer):
        items = [
            Transaction(id="t1", date=date(2024, 3, 1), concept="Rent", amount=Decimal("500"), category="Alquiler"),
            {"categoria": "Netflix", "monto": "12,50"},
            {"category": "Whatever", "amount": 100, "classification": Classification.DEBT},
        ]
        analysis = analyzer.analyze(1000, items).state

        assert analysis.totals[Classification.NEEDS] == Decimal("500")
        assert analysis.totals[Classification.WANTS] == Decimal("12.50")
        assert analysis.totals[Classification.DEBT] == Decimal("100")

    def test_non_numeric_amount_counts_as_zero(self, analyzer):
        result = analyzer.analyze(1000, [{"category": "Ocio", "amount": "lots"}])

        assert result.ok
        assert result.state.totals[Classification.WANTS] == Decimal("0")
        assert len(result.warnings) == 1

    @pytest.mark.parametrize("income", [0, -10, "abc", None])
    def test_rejects_invalid_income(self, analyzer, income):
        result = analyzer.analyze(income, [])

        assert not result.ok
        assert isinstance(result.error, InvalidInputError)

    def test_rejects_non_list_transactions(self, analyzer):
        result = analyzer.analyze(1000, {"category": "Ocio", "amount": 10})

        assert not result.ok
        assert isinstance(result.error, InvalidInputError)

    def test_month_end_projection(self, analyzer, balanced_month):
        projection = analyzer.analyze(2000, balanced_month, as_of=date(2024, 3, 15)).state.projection

        assert projection.spent_so_far == Decimal("1015")
        assert projection.daily_average == Decimal("67.67")
        assert projection.projected_total == Decimal("2097.67")
        assert projection.days_remaining == 16

    def test_custom_savings_floor(self, balanced_month):
        analysis = DistributionAnalyzer(settings={"savings_floor_pct": 20}).analyze(2000, balanced_month).state
        assert analysis.available_to_spend == Decimal("585")


class TestInputHelpers:
    """Tests for monthly_income_for and build_inputs."""

    def test_monthly_income_adds_income_records_of_the_month(self):
        transactions = [
            Transaction(id="i1", date=date(2024, 3, 5), concept="Bonus", amount=Decimal("200"), kind=TransactionKind.INCOME),
            Transaction(id="i2", date=date(2024, 4, 5), concept="Bonus", amount=Decimal("50"), kind=TransactionKind.INCOME),
            Transaction(id="e1", date=date(2024, 3, 6), concept="Food", amount=Decimal("30")),
        ]
        assert monthly_income_for(1500, transactions, "2024-03") == Decimal("1700")

    def test_build_inputs(self):
        obligations = [
            RecurringObligation(id="o1", name="Car", amount=Decimal("250"), kind=ObligationKind.DEBT, category="Coche"),
            RecurringObligation(id="o2", name="Gym", amount=Decimal("40"), status=ObligationStatus.PAUSED),
            RecurringObligation(id="o3", name="Spotify", amount=Decimal("10"), kind=ObligationKind.SUBSCRIPTION),
        ]
        transactions = [
            Transaction(id="e1", date=date(2024, 3, 6), concept="Cena", amount=Decimal("30"), category="Restaurantes"),
            Transaction(id="e2", date=date(2024, 4, 1), concept="Cine", amount=Decimal("12"), category="Ocio"),
            Transaction(id="i1", date=date(2024, 3, 5), concept="Bonus", amount=Decimal("200"), kind=TransactionKind.INCOME),
        ]

        items = build_inputs(obligations, transactions, "2024-03")

        assert items == [
            {"category": "Coche", "amount": Decimal("250"), "classification": Classification.DEBT},
            {"category": "Spotify", "amount": Decimal("10")},
            {"category": "Restaurantes", "amount": Decimal("30")},
        ]
        analysis = DistributionAnalyzer().analyze(1000, items).state
        assert analysis.totals[Classification.DEBT] == Decimal("250")
