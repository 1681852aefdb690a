"""
Unit tests for savings goal tracking.
"""

from datetime import date
from decimal import Decimal

import pytest

from budgeting import EnvelopeAllocator
from exceptions import InvalidAmountError, InvalidInputError, UnknownEntityError
from models import SavingsGoal
from savings_goals import GoalTracker, milestones_for

FIXED_TODAY = date(2024, 3, 15)


@pytest.fixture
def tracker():
    return GoalTracker(today=lambda: FIXED_TODAY)


@pytest.fixture
def car_goal(tracker):
    return tracker.create_goal("New car", 1200, "2024-09").unwrap()


class TestCreateAndEdit:
    """Tests for goal creation and editing."""

    def test_create_goal(self, car_goal):
        assert car_goal.id.startswith("goal_")
        assert car_goal.progress == Decimal("0")
        assert car_goal.contribution_history == ()

    @pytest.mark.parametrize("name,target,deadline,error", [
        ("", 100, None, InvalidInputError),
        ("Trip", 0, None, InvalidAmountError),
        ("Trip", "abc", None, InvalidAmountError),
        ("Trip", 100, "2024-13", InvalidInputError),
    ])
    def test_create_rejects_bad_input(self, tracker, name, target, deadline, error):
        result = tracker.create_goal(name, target, deadline)
        assert not result.ok
        assert isinstance(result.error, error)

    def test_edit_goal(self, tracker, car_goal):
        edited = tracker.edit_goal(car_goal, target_amount=1500, deadline_month="2024-12").unwrap()
        assert edited.target_amount == Decimal("1500")
        assert edited.deadline_month == "2024-12"

    def test_progress_cannot_be_edited(self, tracker, car_goal):
        result = tracker.edit_goal(car_goal, progress=1000)
        assert not result.ok
        assert result.state == car_goal


class TestContributions:
    """Tests for contributions and milestones."""

    def test_contribution_updates_progress_and_history(self, tracker, car_goal):
        result = tracker.contribute(car_goal, 300, source="emergency_fund")
        goal = result.state

        assert goal.progress == Decimal("300")
        assert goal.contribution_history[0].date == FIXED_TODAY
        assert goal.contribution_history[0].source == "emergency_fund"
        assert result.warnings == ["Goal 'New car' reached 25%"]

    def test_multiple_milestones_in_one_contribution(self, tracker, car_goal):
        goal = tracker.contribute(car_goal, 300).state
        result = tracker.contribute(goal, 600)

        assert result.warnings == ["Goal 'New car' reached 50%", "Goal 'New car' reached 75%"]

    def test_rejects_non_positive(self, tracker, car_goal):
        result = tracker.contribute(car_goal, -5)
        assert isinstance(result.error, InvalidAmountError)
        assert result.state == car_goal

    def test_contribute_to_unknown_goal(self, tracker, car_goal):
        result = tracker.contribute_to((car_goal,), "goal_missing", 50)
        assert result.noop
        assert result.ok
        assert isinstance(result.error, UnknownEntityError)
        assert result.state == (car_goal,)

    def test_delete_goal(self, tracker, car_goal):
        assert tracker.delete_goal((car_goal,), car_goal.id).state == ()
        assert tracker.delete_goal((car_goal,), "nope").noop


class TestStats:
    """Tests for derived goal figures."""

    def test_required_monthly_contribution(self, tracker, car_goal):
        stats = tracker.stats(car_goal)

        assert stats.months_remaining == 6
        assert stats.required_monthly_contribution == Decimal("200.00")
        assert stats.milestones_crossed == ()
        assert not stats.completed

    def test_stats_are_pure(self, tracker, car_goal):
        goal = tracker.contribute(car_goal, 500).state
        assert tracker.stats(goal) == tracker.stats(goal)

    def test_past_deadline_requires_the_full_remainder(self, tracker):
        goal = SavingsGoal(id="goal_1", name="Late", target_amount=Decimal("500"), deadline_month="2024-01", progress=Decimal("100"))
        stats = tracker.stats(goal)

        assert stats.months_remaining == 0
        assert stats.required_monthly_contribution == Decimal("400")

    def test_no_deadline(self, tracker):
        goal = SavingsGoal(id="goal_1", name="Someday", target_amount=Decimal("500"))
        stats = tracker.stats(goal)

        assert stats.months_remaining is None
        assert stats.required_monthly_contribution is None

    def test_completed_goal(self, tracker):
        goal = SavingsGoal(id="goal_1", name="Done", target_amount=Decimal("100"), progress=Decimal("120"))
        stats = tracker.stats(goal)

        assert stats.completed
        assert stats.remaining == Decimal("0")
        assert stats.milestones_crossed == (25, 50, 75, 100)

    def test_milestones_for(self):
        assert milestones_for(Decimal("49.99")) == (25,)
        assert milestones_for(Decimal("50")) == (25, 50)

    def test_sort_goals(self, tracker):
        done = SavingsGoal(id="g1", name="Done", target_amount=Decimal("100"), progress=Decimal("100"))
        half = SavingsGoal(id="g2", name="Half", target_amount=Decimal("100"), progress=Decimal("50"))
        little = SavingsGoal(id="g3", name="Little", target_amount=Decimal("100"), progress=Decimal("10"))

        assert [g.id for g in tracker.sort_goals([done, little, half])] == ["g2", "g3", "g1"]


class TestSuggestions:
    """Tests for envelope-based contribution suggestions."""

    def test_suggests_non_savings_envelopes_with_spare_money(self):
        allocator = EnvelopeAllocator()
        state = allocator.default_state(1000)
        state = allocator.set_assigned(state, "leisure", 120).state
        state = allocator.set_assigned(state, "emergency_fund", 300).state
        state = allocator.set_assigned(state, "food", 5).state

        suggestions = GoalTracker.suggest_contributions(state, minimum=10)

        assert [s.envelope_id for s in suggestions] == ["leisure"]
        assert suggestions[0].available == Decimal("120")
