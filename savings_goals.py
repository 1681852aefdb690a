"""
Savings goal tracking module.

Tracks contributions toward named savings targets and derives progress,
the monthly contribution needed to meet a deadline, and the 25/50/75/100%
milestones. Milestones are always recomputed from progress, never stored.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Tuple

from exceptions import InvalidAmountError, InvalidInputError
from models import ZERO, AllocatorState, Contribution, EnvelopeKind, SavingsGoal
from results import OperationResult
from utils import months_between, new_id, parse_month, quantize_cents, to_decimal, to_positive_decimal

logger = logging.getLogger(__name__)

MILESTONES = (25, 50, 75, 100)
HUNDRED = Decimal("100")
EDITABLE_FIELDS = ('name', 'target_amount', 'deadline_month')


@dataclass(frozen=True)
class GoalStats:
    """
    Derived progress figures for a goal.

    Attributes:
        percent: Progress as a percentage of the target
        remaining: Amount still to save (never negative)
        months_remaining: Whole months until the deadline, None without one
        required_monthly_contribution: Amount to save per month to meet the
            deadline, None without one
        milestones_crossed: Milestone percentages reached
        completed: True once progress reaches the target
    """
    percent: Decimal
    remaining: Decimal
    months_remaining: Optional[int]
    required_monthly_contribution: Optional[Decimal]
    milestones_crossed: Tuple[int, ...]
    completed: bool


@dataclass(frozen=True)
class ContributionSuggestion:
    """An envelope with spare money that could fund a goal."""
    envelope_id: str
    envelope_name: str
    available: Decimal


def milestones_for(percent: Decimal) -> Tuple[int, ...]:
    """Milestones reached at a given percentage."""
    return tuple(m for m in MILESTONES if percent >= m)


class GoalTracker:
    """Creates, edits and funds savings goals."""

    def __init__(self, today: Optional[Callable[[], date]] = None):
        self.today = today or date.today

    def create_goal(self, name: str, target_amount: Any, deadline_month: Optional[str] = None) -> OperationResult[SavingsGoal]:
        """
        Create a goal with no progress.

        Args:
            name: Display name
            target_amount: Positive target
            deadline_month: Optional deadline as "YYYY-MM"

        Returns:
            OperationResult holding the new goal
        """
        if not name or not str(name).strip():
            return OperationResult.failure(InvalidInputError("Goal name is required"))
        try:
            target = to_positive_decimal(target_amount, 'target_amount')
            if deadline_month:
                parse_month(deadline_month)
        except (InvalidAmountError, InvalidInputError) as e:
            logger.warning(f"Rejected goal: {e}")
            return OperationResult.failure(e)

        goal = SavingsGoal(id=new_id('goal_'), name=str(name).strip(), target_amount=target, deadline_month=deadline_month or None)
        logger.info(f"Created goal {goal.id} ({goal.name}) for {target}")
        return OperationResult.success(goal)

    def edit_goal(self, goal: SavingsGoal, **fields: Any) -> OperationResult[SavingsGoal]:
        """
        Edit a goal's name, target or deadline.

        Progress and contribution history can only change through
        contribute().
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            return OperationResult.failure(InvalidInputError("Fields cannot be edited", details={'fields': sorted(unknown)}), goal)

        updates = dict(fields)
        try:
            if 'target_amount' in updates:
                updates['target_amount'] = to_positive_decimal(updates['target_amount'], 'target_amount')
            if updates.get('deadline_month'):
                parse_month(updates['deadline_month'])
        except (InvalidAmountError, InvalidInputError) as e:
            logger.warning(f"Rejected edit for goal {goal.id}: {e}")
            return OperationResult.failure(e, goal)
        if 'name' in updates and not str(updates['name'] or '').strip():
            return OperationResult.failure(InvalidInputError("Goal name is required"), goal)

        logger.info(f"Edited goal {goal.id}: {sorted(updates)}")
        return OperationResult.success(replace(goal, **updates))

    @staticmethod
    def delete_goal(goals: Iterable[SavingsGoal], goal_id: str) -> OperationResult[Tuple[SavingsGoal, ...]]:
        """Remove a goal from a collection (no-op for unknown ids)."""
        goals = tuple(goals)
        if not any(g.id == goal_id for g in goals):
            logger.warning(f"Delete of unknown goal {goal_id} ignored")
            return OperationResult.not_found(goals, "Goal", goal_id)
        logger.info(f"Deleted goal {goal_id}")
        return OperationResult.success(tuple(g for g in goals if g.id != goal_id))

    def contribute(
        self,
        goal: SavingsGoal,
        amount: Any,
        source: str = "manual",
        on_date: Optional[date] = None
    ) -> OperationResult[SavingsGoal]:
        """
        Record a contribution toward a goal.

        Args:
            goal: Goal to fund
            amount: Positive amount
            source: Where the money came from (manual, an envelope id, ...)
            on_date: Contribution date (defaults to today)

        Returns:
            OperationResult with the updated goal; newly crossed milestones
            are reported as warnings-level notices
        """
        try:
            value = to_positive_decimal(amount)
        except InvalidAmountError as e:
            logger.warning(f"Rejected contribution to {goal.id}: {e}")
            return OperationResult.failure(e, goal)

        before = self.stats(goal).milestones_crossed
        updated = replace(
            goal,
            progress=goal.progress + value,
            contribution_history=goal.contribution_history + (
                Contribution(date=on_date or self.today(), amount=value, source=source or "manual"),
            ),
        )
        reached = [m for m in self.stats(updated).milestones_crossed if m not in before]
        notices = [f"Goal '{goal.name}' reached {m}%" for m in reached]
        logger.info(f"Contributed {value} to goal {goal.id}; progress {updated.progress}/{goal.target_amount}")
        return OperationResult.success(updated, notices)

    def contribute_to(
        self,
        goals: Iterable[SavingsGoal],
        goal_id: str,
        amount: Any,
        source: str = "manual",
        on_date: Optional[date] = None
    ) -> OperationResult[Tuple[SavingsGoal, ...]]:
        """Contribute to the goal with the given id within a collection."""
        goals = tuple(goals)
        goal = next((g for g in goals if g.id == goal_id), None)
        if goal is None:
            logger.warning(f"Contribution to unknown goal {goal_id} ignored")
            return OperationResult.not_found(goals, "Goal", goal_id)

        result = self.contribute(goal, amount, source, on_date)
        if not result.ok:
            return OperationResult.failure(result.error, goals)
        return OperationResult.success(tuple(result.state if g.id == goal_id else g for g in goals), result.warnings)

    def stats(self, goal: SavingsGoal, today: Optional[date] = None) -> GoalStats:
        """
        Derive progress figures for a goal.

        Pure: calling it twice without a contribution in between returns
        equal results.
        """
        percent = goal.progress / goal.target_amount * HUNDRED if goal.target_amount > ZERO else ZERO
        remaining = max(ZERO, goal.target_amount - goal.progress)

        months_remaining = None
        required = None
        if goal.deadline_month:
            months_remaining = max(0, months_between(today or self.today(), goal.deadline_month))
            required = quantize_cents(remaining / months_remaining) if months_remaining > 0 else remaining

        return GoalStats(
            percent=percent,
            remaining=remaining,
            months_remaining=months_remaining,
            required_monthly_contribution=required,
            milestones_crossed=milestones_for(percent),
            completed=goal.progress >= goal.target_amount,
        )

    @staticmethod
    def suggest_contributions(allocator_state: AllocatorState, minimum: Any = 10) -> List[ContributionSuggestion]:
        """
        Suggest envelopes whose spare money could fund goals.

        Savings envelopes are skipped; others qualify when their available
        money exceeds `minimum`.
        """
        threshold = to_decimal(minimum, 'minimum')
        suggestions = [
            ContributionSuggestion(envelope_id=e.id, envelope_name=e.name, available=e.available)
            for e in allocator_state.envelopes
            if e.kind is not EnvelopeKind.SAVINGS and e.available > threshold
        ]
        return sorted(suggestions, key=lambda s: s.available, reverse=True)

    def sort_goals(self, goals: Iterable[SavingsGoal]) -> List[SavingsGoal]:
        """Incomplete goals first, then by progress percentage descending."""
        def key(goal: SavingsGoal):
            stats = self.stats(goal)
            return (stats.completed, -stats.percent)
        return sorted(goals, key=key)
