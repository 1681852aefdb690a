"""
Report generator module for formatting engine output.

Turns distribution results, envelope states, payoff plans and goals into
pandas DataFrames and grid text tables (tabulate) for the CLI, and exports
DataFrames to CSV.
"""

import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from tabulate import tabulate

from debt_payoff import NoDebts
from distribution_analysis import DistributionResult
from models import AllocatorState, Classification, RecurringObligation, SavingsGoal, Transaction
from monthly_overview import MonthSummary, ScheduledCharge
from savings_goals import ContributionSuggestion, GoalTracker

logger = logging.getLogger(__name__)

RULE_WIDTH = 80


class ReportGenerator:
    """
    Generate formatted reports from engine results.

    Amounts stay Decimal until they are formatted; DataFrames carry floats
    for display and CSV export only.
    """

    def __init__(self, currency_symbol: str = "€"):
        """
        Initialize the report generator.

        Args:
            currency_symbol: Symbol appended to formatted amounts
        """
        self.currency_symbol = currency_symbol

    def format_currency(self, amount: Any) -> str:
        """
        Format amount as currency string.

        Args:
            amount: Amount to format

        Returns:
            Formatted currency string, e.g. "1,234.50 €"
        """
        return f"{Decimal(amount):,.2f} {self.currency_symbol}"

    def format_percentage(self, percentage: Any) -> str:
        return f"{Decimal(percentage):.2f}%"

    def _table(self, title: str, rows: List[List[Any]], headers: List[str]) -> str:
        lines = ["=" * RULE_WIDTH, title, "=" * RULE_WIDTH]
        if rows:
            lines.append(tabulate(rows, headers=headers, tablefmt="grid"))
        else:
            lines.append("(nothing to show)")
        return "\n".join(lines)

    # Fund

    def fund_report(self, status: Dict[str, Any]) -> str:
        last = status.get('last_deposit_date')
        rows = [
            ["Balance", self.format_currency(status['balance'])],
            ["Last deposit", last.isoformat() if last else "-"],
            ["Deposits", status.get('deposits', 0)],
            ["Manual adjustments", status.get('adjustments', 0)],
            ["Unexplained difference", self.format_currency(status.get('discrepancy', 0))],
        ]
        return self._table("AVAILABLE FUNDS", rows, ["Item", "Value"])

    def transactions_frame(self, transactions: Iterable[Transaction]) -> pd.DataFrame:
        columns = ['id', 'date', 'concept', 'amount', 'category', 'kind', 'fund_linked']
        records = [
            {
                'id': t.id,
                'date': t.date.isoformat(),
                'concept': t.concept,
                'amount': float(t.amount),
                'category': t.category,
                'kind': t.kind.value,
                'fund_linked': t.fund_linked,
            }
            for t in transactions
        ]
        return pd.DataFrame(records, columns=columns)

    def transactions_report(self, transactions: Iterable[Transaction]) -> str:
        transactions = list(transactions)
        rows = [
            [t.id, t.date.isoformat(), t.concept[:40], self.format_currency(t.amount), t.category, t.kind.value, "yes" if t.fund_linked else "no"]
            for t in transactions
        ]
        return self._table(
            f"TRANSACTIONS ({len(transactions)})",
            rows,
            ["Id", "Date", "Concept", "Amount", "Category", "Kind", "From fund"],
        )

    # Distribution

    def distribution_frame(self, result: DistributionResult) -> pd.DataFrame:
        """One row per bucket with amount, percent and recommended percent."""
        records = []
        for bucket in (Classification.NEEDS, Classification.WANTS, Classification.DEBT, Classification.SAVINGS, Classification.UNCLASSIFIED):
            comparison = result.comparison.get(bucket)
            records.append({
                'bucket': bucket.value,
                'amount': float(result.totals[bucket]),
                'percent': float(result.percentages[bucket]),
                'recommended': float(comparison.recommended) if comparison else None,
                'deviation': float(comparison.deviation) if comparison else None,
            })
        return pd.DataFrame(records)

    def distribution_report(self, result: DistributionResult, month: str = "") -> str:
        rows = []
        for bucket in (Classification.NEEDS, Classification.WANTS, Classification.DEBT, Classification.SAVINGS, Classification.UNCLASSIFIED):
            comparison = result.comparison.get(bucket)
            rows.append([
                bucket.value,
                self.format_currency(result.totals[bucket]),
                self.format_percentage(result.percentages[bucket]),
                self.format_percentage(comparison.recommended) if comparison else "-",
                f"{comparison.deviation:+.2f}" if comparison else "-",
            ])

        lines = [
            self._table(
                f"SPENDING DISTRIBUTION {month}".rstrip(),
                rows,
                ["Bucket", "Amount", "Real", "Recommended", "Deviation"],
            ),
            f"Income:               {self.format_currency(result.monthly_income)}",
            f"Available now:        {self.format_currency(result.available_now)}",
            f"Available to spend:   {self.format_currency(result.available_to_spend)}",
            f"Spent:                {self.format_percentage(result.overspend.percent_spent)} ({result.overspend.alert})",
        ]
        if result.ignored_savings_total:
            lines.append(f"Tagged as savings (not counted): {self.format_currency(result.ignored_savings_total)}")
        if result.projection is not None:
            lines.append(
                f"Month-end projection: {self.format_currency(result.projection.projected_total)} "
                f"({result.projection.days_remaining} days left)"
            )
        lines.append("")
        for suggestion in result.suggestions:
            lines.append(f"[{suggestion.level.value}] {suggestion.message}")
            if suggestion.action:
                lines.append(f"    {suggestion.action}")
        return "\n".join(lines)

    # Envelopes

    def envelopes_frame(self, state: AllocatorState) -> pd.DataFrame:
        records = [
            {
                'id': e.id,
                'name': e.name,
                'kind': e.kind.value,
                'assigned': float(e.assigned),
                'spent': float(e.spent),
                'available': float(e.available),
                'exceeded': e.is_exceeded,
            }
            for e in state.envelopes
        ]
        return pd.DataFrame(records, columns=['id', 'name', 'kind', 'assigned', 'spent', 'available', 'exceeded'])

    def envelopes_report(self, state: AllocatorState, health: Optional[Dict[str, Any]] = None) -> str:
        rows = [
            [
                e.id,
                e.name,
                e.kind.value,
                self.format_currency(e.assigned),
                self.format_currency(e.spent),
                self.format_currency(e.available) + (" !" if e.is_exceeded else ""),
            ]
            for e in state.envelopes
        ]
        lines = [
            self._table("ENVELOPES", rows, ["Id", "Name", "Kind", "Assigned", "Spent", "Available"]),
            f"Fund balance:     {self.format_currency(state.fund_balance)}",
            f"Unassigned money: {self.format_currency(state.unassigned_money)}",
        ]
        if state.over_assigned:
            lines.append(f"Over-assigned by: {self.format_currency(state.over_assigned)}")
        if health:
            for alert in health.get('alerts', []):
                lines.append(f"ALERT: {alert}")
            for tip in health.get('tips', []):
                lines.append(f"Tip: {tip}")
        return "\n".join(lines)

    def month_summary_report(self, summary: MonthSummary) -> str:
        rows = [
            ["Income", self.format_currency(summary.income)],
            ["Fixed obligations", self.format_currency(summary.fixed_total)],
            ["Variable expenses", self.format_currency(summary.variable_total)],
            ["Total spent", self.format_currency(summary.total_spent)],
            ["Remaining", self.format_currency(summary.remaining) + (" !" if summary.remaining < 0 else "")],
        ]
        return self._table(f"MONTH SUMMARY {summary.month}", rows, ["Item", "Amount"])

    def charges_report(self, charges: Iterable[ScheduledCharge]) -> str:
        """Obligation charges by date, with the running total."""
        rows = []
        running = Decimal("0")
        for charge in charges:
            running += charge.amount
            rows.append([
                charge.date.isoformat(),
                charge.name,
                charge.category or "-",
                self.format_currency(charge.amount),
                self.format_currency(running),
            ])
        return self._table("UPCOMING CHARGES", rows, ["Date", "Obligation", "Category", "Amount", "Cumulative"])

    # Debts

    def obligations_report(self, obligations: Iterable[RecurringObligation]) -> str:
        rows = [
            [
                o.id,
                o.name,
                self.format_currency(o.amount),
                o.day_of_month,
                o.kind.value,
                o.status.value,
                "-" if o.installments_remaining is None else o.installments_remaining,
                "-" if o.interest_rate_pct is None else self.format_percentage(o.interest_rate_pct),
            ]
            for o in obligations
        ]
        return self._table(
            "RECURRING OBLIGATIONS",
            rows,
            ["Id", "Name", "Monthly", "Day", "Kind", "Status", "Left", "Rate"],
        )

    def payoff_report(self, plan: Any) -> str:
        """Format a PayoffPlan (or the NoDebts notice)."""
        if isinstance(plan, NoDebts):
            return plan.message

        rows = [
            [
                entry.position,
                entry.name,
                self.format_currency(entry.monthly_amount),
                self.format_currency(entry.starting_balance),
                "-" if entry.interest_rate_pct is None else self.format_percentage(entry.interest_rate_pct),
                entry.months_to_zero if entry.months_to_zero is not None else "unpaid",
            ]
            for entry in plan.entries
        ]
        lines = [
            self._table(
                f"DEBT PAYOFF PLAN ({plan.strategy.value})",
                rows,
                ["#", "Debt", "Monthly", "Balance", "Rate", "Paid off in month"],
            ),
            f"Debt-free in {plan.total_months} months",
        ]
        if plan.comparison is not None:
            comparison = plan.comparison
            lines.append(
                f"Paying {self.format_currency(comparison.extra_monthly_payment)} extra saves "
                f"{comparison.months_saved} months (~{self.format_currency(comparison.interest_saved)} interest)"
            )
        for month in sorted(plan.release_calendar):
            freed = ", ".join(f"{name} {self.format_currency(amount)}" for name, amount in plan.release_calendar[month].items())
            lines.append(f"Month {month}: frees {freed}")
        if plan.divergence is not None:
            lines.append(f"WARNING: not paid off within {plan.divergence.cap} months")
        return "\n".join(lines)

    # Goals

    def goals_frame(self, goals: Iterable[SavingsGoal], tracker: GoalTracker) -> pd.DataFrame:
        records = []
        for goal in goals:
            stats = tracker.stats(goal)
            records.append({
                'id': goal.id,
                'name': goal.name,
                'target': float(goal.target_amount),
                'progress': float(goal.progress),
                'percent': float(stats.percent),
                'deadline': goal.deadline_month,
                'monthly_needed': float(stats.required_monthly_contribution) if stats.required_monthly_contribution is not None else None,
            })
        return pd.DataFrame(records, columns=['id', 'name', 'target', 'progress', 'percent', 'deadline', 'monthly_needed'])

    def goals_report(
        self,
        goals: Iterable[SavingsGoal],
        tracker: GoalTracker,
        suggestions: Optional[List[ContributionSuggestion]] = None
    ) -> str:
        rows = []
        for goal in goals:
            stats = tracker.stats(goal)
            rows.append([
                goal.id,
                goal.name,
                f"{self.format_currency(goal.progress)} / {self.format_currency(goal.target_amount)}",
                self.format_percentage(stats.percent),
                goal.deadline_month or "-",
                "-" if stats.required_monthly_contribution is None else self.format_currency(stats.required_monthly_contribution),
                "done" if stats.completed else ", ".join(f"{m}%" for m in stats.milestones_crossed) or "-",
            ])
        lines = [self._table("SAVINGS GOALS", rows, ["Id", "Goal", "Progress", "%", "Deadline", "Per month", "Milestones"])]
        for suggestion in suggestions or []:
            lines.append(f"Tip: '{suggestion.envelope_name}' has {self.format_currency(suggestion.available)} available")
        return "\n".join(lines)

    def export_to_csv(self, df: pd.DataFrame, output_path: Path, report_name: str = "report") -> None:
        """
        Export DataFrame to CSV file.

        Args:
            df: DataFrame to export
            output_path: Output file path
            report_name: Name of the report for logging
        """
        try:
            df.to_csv(output_path, index=False)
            logger.info(f"Exported {report_name} to {output_path}")
        except OSError as e:
            logger.error(f"Failed to export {report_name}: {e}")
            raise
