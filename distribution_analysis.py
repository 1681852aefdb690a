"""
Spending distribution analysis module.

Compares how a month's spending is distributed across needs, wants and debt
against a target percentage model (50/30/20, or a debt-adjusted variant) and
generates threshold-based suggestions. Savings is always the residual of
income minus everything else; amounts explicitly tagged as savings are
reported separately and not counted.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from classification import Classifier
from config_manager import DEFAULT_CONFIG
from exceptions import FinanceAppError, InvalidInputError
from models import (
    ZERO,
    Classification,
    ObligationKind,
    ObligationStatus,
    RecurringObligation,
    Transaction,
    TransactionKind,
)
from results import OperationResult
from utils import days_in_month, in_month, quantize_cents, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

_BUCKET_NAMES = {
    'needs': Classification.NEEDS,
    'wants': Classification.WANTS,
    'debt': Classification.DEBT,
    'savings': Classification.SAVINGS,
}


class SuggestionLevel(enum.Enum):
    """Severity of a distribution suggestion."""
    CRITICAL = "critico"
    WARNING = "advertencia"
    SUCCESS = "exito"


@dataclass(frozen=True)
class Suggestion:
    """
    A single piece of budgeting guidance.

    Attributes:
        level: Severity
        bucket: Bucket the suggestion is about (None for the balanced message)
        message: Human-readable diagnosis
        action: Concrete action including the amount to adjust
        amount: Amount to adjust, in currency units
    """
    level: SuggestionLevel
    bucket: Optional[Classification]
    message: str
    action: str
    amount: Decimal = ZERO


@dataclass(frozen=True)
class BucketComparison:
    """Real vs recommended percentage for one bucket."""
    real: Decimal
    recommended: Decimal

    @property
    def deviation(self) -> Decimal:
        return self.real - self.recommended


@dataclass(frozen=True)
class OverspendStatus:
    """How much of the month's income has already been spent."""
    total_spent: Decimal
    remaining: Decimal
    percent_spent: Decimal
    is_overspent: bool
    alert: str


@dataclass(frozen=True)
class MonthProjection:
    """Linear projection of spending to the end of the month."""
    spent_so_far: Decimal
    projected_total: Decimal
    daily_average: Decimal
    days_remaining: int


@dataclass(frozen=True)
class DistributionResult:
    """
    Output of a distribution analysis.

    Attributes:
        monthly_income: Income the percentages are relative to
        totals: Amount per bucket (savings is the residual)
        percentages: Percent of income per bucket
        target_model: Recommended percentages used for the comparison
        comparison: Real vs recommended per target bucket
        suggestions: Generated guidance (never empty)
        ignored_savings_total: Amounts tagged as savings, excluded from totals
        available_now: Income minus all spending
        available_to_spend: available_now minus the savings floor
        overspend: Overspend detection
        projection: Month-end projection, when a reference date was given
    """
    monthly_income: Decimal
    totals: Dict[Classification, Decimal]
    percentages: Dict[Classification, Decimal]
    target_model: Dict[Classification, Decimal]
    comparison: Dict[Classification, BucketComparison]
    suggestions: Tuple[Suggestion, ...]
    ignored_savings_total: Decimal
    available_now: Decimal
    available_to_spend: Decimal
    overspend: OverspendStatus
    projection: Optional[MonthProjection] = None

    @property
    def total_spent(self) -> Decimal:
        return self.overspend.total_spent

    def deviation(self, bucket: Classification) -> Optional[Decimal]:
        comparison = self.comparison.get(bucket)
        return comparison.deviation if comparison else None


def _field(item: Any, *names: str) -> Any:
    """Read the first present field from a mapping or an object."""
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    return None


def _model_from_settings(raw: Mapping[str, Any]) -> Dict[Classification, Decimal]:
    return {_BUCKET_NAMES[key]: to_decimal(value, key) for key, value in raw.items()}


class DistributionAnalyzer:
    """
    Analyzes spending distribution against a target model.

    The analyzer is stateless: each call to analyze() is a pure computation
    over its inputs.
    """

    def __init__(self, classifier: Optional[Classifier] = None, settings: Optional[Dict[str, Any]] = None):
        """
        Initialize analyzer.

        Args:
            classifier: Classifier used to bucket categories
            settings: The 'analysis' configuration section
        """
        self.classifier = classifier or Classifier()
        settings = {**DEFAULT_CONFIG['analysis'], **(settings or {})}
        self.deviation_critical = to_decimal(settings['deviation_critical'])
        self.deviation_warning = to_decimal(settings['deviation_warning'])
        self.savings_shortfall = to_decimal(settings['savings_shortfall'])
        self.savings_floor_pct = to_decimal(settings['savings_floor_pct'])
        self.overspend_warning_pct = to_decimal(settings['overspend_warning_pct'])
        self.overspend_critical_pct = to_decimal(settings['overspend_critical_pct'])
        self.target_with_debt = _model_from_settings(settings['target_with_debt'])
        self.target_without_debt = _model_from_settings(settings['target_without_debt'])

    def analyze(
        self,
        monthly_income: Any,
        transactions: Any,
        as_of: Optional[date] = None
    ) -> OperationResult[DistributionResult]:
        """
        Analyze a month of spending.

        Args:
            monthly_income: Positive income for the month
            transactions: List of {category, amount} mappings or objects with
                category/amount attributes
            as_of: Optional reference date for the month-end projection

        Returns:
            OperationResult holding the DistributionResult, or an
            InvalidInputError failure for bad arguments
        """
        try:
            income = to_decimal(monthly_income, 'monthly_income')
        except FinanceAppError as e:
            logger.warning(f"Rejected analysis: {e}")
            return OperationResult.failure(
                InvalidInputError("Monthly income must be a number", details={'monthly_income': monthly_income}, original_error=e)
            )
        if income <= ZERO:
            logger.warning(f"Rejected analysis: non-positive income {income}")
            return OperationResult.failure(
                InvalidInputError("Monthly income must be greater than 0", details={'monthly_income': monthly_income})
            )
        if not isinstance(transactions, (list, tuple)):
            logger.warning("Rejected analysis: transactions is not a list")
            return OperationResult.failure(
                InvalidInputError("Transactions must be a list", details={'type': type(transactions).__name__})
            )

        totals, ignored_savings, warnings = self._bucket_totals(transactions)
        spent = totals[Classification.NEEDS] + totals[Classification.WANTS] + totals[Classification.DEBT] + totals[Classification.UNCLASSIFIED]
        totals[Classification.SAVINGS] = max(ZERO, income - spent)

        percentages = {bucket: amount / income * HUNDRED for bucket, amount in totals.items()}
        model = self.target_with_debt if totals[Classification.DEBT] > ZERO else self.target_without_debt
        comparison = {
            bucket: BucketComparison(real=percentages[bucket], recommended=recommended)
            for bucket, recommended in model.items()
        }

        available_now = income - spent
        result = DistributionResult(
            monthly_income=income,
            totals=totals,
            percentages=percentages,
            target_model=dict(model),
            comparison=comparison,
            suggestions=tuple(self._suggestions(comparison, income)),
            ignored_savings_total=ignored_savings,
            available_now=available_now,
            available_to_spend=available_now - income * self.savings_floor_pct / HUNDRED,
            overspend=self._overspend(spent, income),
            projection=self._projection(spent, as_of) if as_of else None,
        )
        logger.info(
            f"Analyzed {len(transactions)} items against income {income}: "
            f"needs={percentages[Classification.NEEDS]:.2f}% wants={percentages[Classification.WANTS]:.2f}% "
            f"debt={percentages[Classification.DEBT]:.2f}%"
        )
        return OperationResult.success(result, warnings)

    def _bucket_totals(self, transactions: Iterable[Any]) -> Tuple[Dict[Classification, Decimal], Decimal, List[str]]:
        totals = {bucket: ZERO for bucket in Classification}
        ignored_savings = ZERO
        warnings = []
        for item in transactions:
            category = _field(item, 'category', 'categoria')
            raw_amount = _field(item, 'amount', 'monto')
            try:
                amount = to_decimal(raw_amount)
            except FinanceAppError:
                message = f"Non-numeric amount {raw_amount!r} for '{category}' counted as 0"
                logger.warning(message)
                warnings.append(message)
                amount = ZERO

            bucket = _field(item, 'classification')
            if not isinstance(bucket, Classification):
                bucket = self.classifier.classify(category)

            if bucket is Classification.SAVINGS:
                ignored_savings += amount
            else:
                totals[bucket] += amount
        return totals, ignored_savings, warnings

    def _suggestions(self, comparison: Dict[Classification, BucketComparison], income: Decimal) -> List[Suggestion]:
        suggestions = []

        def amount_for(deviation: Decimal) -> Decimal:
            return quantize_cents(abs(deviation) / HUNDRED * income)

        needs = comparison.get(Classification.NEEDS)
        if needs and needs.deviation > self.deviation_critical:
            amount = amount_for(needs.deviation)
            suggestions.append(Suggestion(
                level=SuggestionLevel.CRITICAL,
                bucket=Classification.NEEDS,
                message=(
                    f"Needs take {needs.real:.1f}% of income, {needs.deviation:.1f} points above "
                    f"the recommended {needs.recommended}%. Review housing and fixed costs."
                ),
                action=f"Try to cut {amount}€ from basic expenses",
                amount=amount,
            ))

        debt = comparison.get(Classification.DEBT)
        if debt and debt.deviation > self.deviation_critical:
            amount = amount_for(debt.deviation)
            suggestions.append(Suggestion(
                level=SuggestionLevel.CRITICAL,
                bucket=Classification.DEBT,
                message=(
                    f"Debt payments take {debt.real:.1f}% of income, above the recommended {debt.recommended}%."
                ),
                action=f"Reduce debt payments by {amount}€ (refinance or pay off the smallest debt first)",
                amount=amount,
            ))

        wants = comparison.get(Classification.WANTS)
        if wants and wants.deviation > self.deviation_warning:
            amount = amount_for(wants.deviation)
            suggestions.append(Suggestion(
                level=SuggestionLevel.WARNING,
                bucket=Classification.WANTS,
                message=f"You spend {wants.real:.1f}% on wants, above the recommended {wants.recommended}%.",
                action=f"Cutting {amount}€ from leisure would balance your budget",
                amount=amount,
            ))

        savings = comparison.get(Classification.SAVINGS)
        if savings and savings.deviation < self.savings_shortfall:
            amount = amount_for(savings.deviation)
            suggestions.append(Suggestion(
                level=SuggestionLevel.CRITICAL,
                bucket=Classification.SAVINGS,
                message=f"You only save {savings.real:.1f}% of income. The target is {savings.recommended}%.",
                action=f"Set aside {amount}€ more each month, ideally with an automatic transfer",
                amount=amount,
            ))

        if not suggestions:
            suggestions.append(Suggestion(
                level=SuggestionLevel.SUCCESS,
                bucket=None,
                message="Your spending distribution is balanced.",
                action="Keep it up and consider raising your savings if you can.",
            ))
        return suggestions

    def _overspend(self, spent: Decimal, income: Decimal) -> OverspendStatus:
        percent = spent / income * HUNDRED
        if percent > self.overspend_critical_pct:
            alert = SuggestionLevel.CRITICAL.value
        elif percent > self.overspend_warning_pct:
            alert = SuggestionLevel.WARNING.value
        else:
            alert = "normal"
        return OverspendStatus(
            total_spent=spent,
            remaining=income - spent,
            percent_spent=percent,
            is_overspent=spent > income,
            alert=alert,
        )

    @staticmethod
    def _projection(spent: Decimal, as_of: date) -> MonthProjection:
        month_days = days_in_month(as_of.year, as_of.month)
        daily_average = spent / as_of.day
        return MonthProjection(
            spent_so_far=spent,
            projected_total=quantize_cents(daily_average * month_days),
            daily_average=quantize_cents(daily_average),
            days_remaining=month_days - as_of.day,
        )


def monthly_income_for(base_income: Any, transactions: Iterable[Transaction], month: str) -> Decimal:
    """
    Income for a month: the configured base income plus income records.

    Args:
        base_income: Recurring monthly income (payroll)
        transactions: Transactions to scan
        month: Month as "YYYY-MM"

    Returns:
        Total income for the month
    """
    total = to_decimal(base_income or 0, 'base_income')
    for transaction in transactions:
        if transaction.kind is TransactionKind.INCOME and in_month(transaction.date, month):
            total += transaction.amount
    return total


def build_inputs(
    obligations: Iterable[RecurringObligation],
    transactions: Iterable[Transaction],
    month: str
) -> List[Dict[str, Any]]:
    """
    Turn a month's obligations and expenses into analyzer items.

    Active obligations count in full; debt obligations are forced into the
    debt bucket whatever their category says.

    Args:
        obligations: Recurring obligations
        transactions: One-off transactions
        month: Month as "YYYY-MM"

    Returns:
        List of {category, amount[, classification]} items
    """
    items: List[Dict[str, Any]] = []
    for obligation in obligations:
        if obligation.status is not ObligationStatus.ACTIVE:
            continue
        item: Dict[str, Any] = {'category': obligation.category or obligation.name, 'amount': obligation.amount}
        if obligation.kind is ObligationKind.DEBT:
            item['classification'] = Classification.DEBT
        items.append(item)

    for transaction in transactions:
        if transaction.is_expense and in_month(transaction.date, month):
            items.append({'category': transaction.category or transaction.concept, 'amount': transaction.amount})
    return items
