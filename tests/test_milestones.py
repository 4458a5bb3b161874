"""
Tests for MilestoneEvaluator phase status derivation.
"""
import pytest

from model import MilestoneStatus, PhaseDefinition, TaskStatus, Trade
from service import DEFAULT_TRADES, MilestoneEvaluator, TradeService


@pytest.fixture
def trades():
    return {spec["name"]: Trade(**spec) for spec in DEFAULT_TRADES}


@pytest.fixture
def lookup(trades):
    return TradeService.name_lookup(trades.values())


@pytest.fixture
def task_for(trades, make_task):
    def _task(trade_name, status=TaskStatus.NOT_STARTED):
        return make_task(trade_id=trades[trade_name].id, status=status)
    return _task


def statuses(milestones):
    return {m.name: m.status for m in milestones}


class TestEvaluate:
    """Status of each phase for typical task lists."""

    def test_empty_task_list_is_all_incomplete(self, lookup):
        milestones = MilestoneEvaluator().evaluate([], lookup)
        assert [m.name for m in milestones] == [
            "Foundation", "Framing", "Rough-ins", "Inspections", "Exterior", "Interior", "Final",
        ]
        assert all(m.status == MilestoneStatus.INCOMPLETE for m in milestones)

    def test_empty_lookup_is_all_incomplete(self, task_for):
        milestones = MilestoneEvaluator().evaluate([task_for("Foundation")], {})
        assert all(m.status == MilestoneStatus.INCOMPLETE for m in milestones)

    def test_first_incomplete_phase_is_next(self, task_for, lookup):
        tasks = [
            task_for("Foundation", TaskStatus.COMPLETED),
            task_for("Framing"),
        ]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert result["Foundation"] == MilestoneStatus.COMPLETED
        assert result["Framing"] == MilestoneStatus.NEXT
        assert result["Rough-ins"] == MilestoneStatus.INCOMPLETE
        assert result["Final"] == MilestoneStatus.INCOMPLETE

    def test_in_progress_phase_suppresses_next(self, task_for, lookup):
        tasks = [
            task_for("Foundation", TaskStatus.COMPLETED),
            task_for("Framing", TaskStatus.IN_PROGRESS),
        ]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert result["Framing"] == MilestoneStatus.IN_PROGRESS
        assert MilestoneStatus.NEXT not in result.values()

    def test_delayed_task_counts_as_in_progress(self, task_for, lookup):
        tasks = [task_for("Foundation", TaskStatus.DELAYED)]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert result["Foundation"] == MilestoneStatus.IN_PROGRESS

    def test_phase_needs_every_task_completed(self, task_for, lookup):
        tasks = [
            task_for("Drywall", TaskStatus.COMPLETED),
            task_for("Painting"),
        ]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert result["Interior"] == MilestoneStatus.INCOMPLETE

    def test_all_phases_complete_completes_final(self, trades, task_for, lookup):
        tasks = [
            task_for(name, TaskStatus.COMPLETED)
            for name in trades
        ]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert all(status == MilestoneStatus.COMPLETED for status in result.values())

    def test_unknown_trades_are_ignored(self, task_for, lookup, make_task):
        tasks = [task_for("Foundation", TaskStatus.COMPLETED), make_task(status=TaskStatus.IN_PROGRESS)]
        result = statuses(MilestoneEvaluator().evaluate(tasks, lookup))
        assert result["Framing"] == MilestoneStatus.NEXT

    def test_custom_phase_definitions(self, task_for, lookup):
        evaluator = MilestoneEvaluator([
            PhaseDefinition("Shell", ("Foundation", "Framing")),
            PhaseDefinition("Handover"),
        ])
        tasks = [
            task_for("Foundation", TaskStatus.COMPLETED),
            task_for("Framing", TaskStatus.COMPLETED),
        ]
        result = statuses(evaluator.evaluate(tasks, lookup))
        assert result == {
            "Shell": MilestoneStatus.COMPLETED,
            "Handover": MilestoneStatus.COMPLETED,
        }

    def test_final_phase_with_open_tasks_is_not_completed(self, task_for, lookup):
        """A final phase that has tasks keeps its computed status."""
        evaluator = MilestoneEvaluator([
            PhaseDefinition("Shell", ("Foundation",)),
            PhaseDefinition("Handover", ("Painting",)),
        ])
        tasks = [
            task_for("Foundation", TaskStatus.COMPLETED),
            task_for("Painting"),
        ]
        result = statuses(evaluator.evaluate(tasks, lookup))
        assert result == {
            "Shell": MilestoneStatus.COMPLETED,
            "Handover": MilestoneStatus.NEXT,
        }

    def test_final_phase_with_tasks_in_progress(self, task_for, lookup):
        evaluator = MilestoneEvaluator([
            PhaseDefinition("Shell", ("Foundation",)),
            PhaseDefinition("Handover", ("Painting",)),
        ])
        tasks = [
            task_for("Foundation", TaskStatus.COMPLETED),
            task_for("Painting", TaskStatus.IN_PROGRESS),
        ]
        result = statuses(evaluator.evaluate(tasks, lookup))
        assert result["Handover"] == MilestoneStatus.IN_PROGRESS
