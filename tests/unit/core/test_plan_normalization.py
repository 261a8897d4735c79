"""Tests for plan normalisation and task scheduling."""

import pytest

from openjragent.core.plan import get_next_task, is_critical, is_task_ready, normalize_plan
from openjragent.core.state import Plan, TaskStatus


def _complete(plan: Plan, *task_ids: str) -> Plan:
    for task_id in task_ids:
        plan = plan.with_task(task_id, status=TaskStatus.COMPLETED)
    return plan


class TestNormalizePlan:
    """Tests for normalize_plan."""

    def test_resolves_dependencies_by_title(self):
        """Dependencies given as titles are replaced by task ids."""
        plan = normalize_plan(
            {
                "tasks": [
                    {"title": "Write code"},
                    {"title": "Run tests", "dependencies": ["Write code"]},
                ]
            },
            goal="Ship feature",
        )

        write, run = plan.tasks
        assert run.dependencies == (write.id,)
        assert plan.goal == "Ship feature"

    def test_fills_missing_fields(self):
        """Missing ids, statuses and priorities get defaults."""
        plan = normalize_plan({"tasks": [{"title": "A"}, {"title": "B", "status": "bogus"}]})

        assert all(t.id for t in plan.tasks)
        assert [t.status for t in plan.tasks] == [TaskStatus.PENDING, TaskStatus.PENDING]
        assert [t.priority for t in plan.tasks] == [1, 2]

    def test_drops_unresolved_self_and_duplicate_dependencies(self):
        """Unknown references, self references and duplicates are removed."""
        plan = normalize_plan(
            {
                "tasks": [
                    {"id": "a", "title": "A"},
                    {"id": "b", "title": "B", "dependencies": ["a", "A", "b", "missing"]},
                ]
            }
        )

        assert plan.get_task("b").dependencies == ("a",)

    def test_regenerates_duplicate_ids(self):
        """Duplicate task ids are made unique."""
        plan = normalize_plan({"tasks": [{"id": "x", "title": "One"}, {"id": "x", "title": "Two"}]})

        ids = [t.id for t in plan.tasks]
        assert ids[0] == "x"
        assert len(set(ids)) == 2

    def test_is_idempotent(self):
        """Normalising a normalised plan changes nothing."""
        once = normalize_plan(
            {
                "goal": "g",
                "tasks": [
                    {"title": "A"},
                    {"title": "B", "dependencies": ["A", "nope"]},
                    {"id": "c", "title": "C", "dependencies": ["B"], "priority": 1},
                ],
            }
        )
        twice = normalize_plan(once)

        assert twice == once

    def test_invalid_current_task_id_is_cleared(self):
        """current_task_id must reference a task in the plan."""
        plan = normalize_plan({"tasks": [{"id": "a", "title": "A"}], "current_task_id": "zzz"})
        assert plan.current_task_id is None

    def test_empty_plan(self):
        """A plan without tasks is valid and trivially terminal."""
        plan = normalize_plan({"tasks": []}, goal="nothing")
        assert plan.tasks == ()
        assert plan.all_terminal


class TestScheduling:
    """Tests for get_next_task on common dependency shapes."""

    def test_chain_runs_in_order(self, mock_plan_factory):
        """A -> B -> C executes strictly in order."""
        plan = mock_plan_factory([("a", []), ("b", ["a"]), ("c", ["b"])])
        order = []
        while (task := get_next_task(plan)) is not None:
            order.append(task.id)
            plan = _complete(plan, task.id)
        assert order == ["a", "b", "c"]

    def test_diamond_waits_for_both_branches(self, mock_plan_factory):
        """D depends on B and C, which both depend on A."""
        plan = mock_plan_factory([("a", []), ("b", ["a"]), ("c", ["a"]), ("d", ["b", "c"])])

        plan = _complete(plan, "a", "b")
        assert not is_task_ready(plan.get_task("d"), plan)
        assert get_next_task(plan).id == "c"

        plan = _complete(plan, "c")
        assert get_next_task(plan).id == "d"

    def test_forest_uses_plan_order(self, mock_plan_factory):
        """Independent roots are picked in plan order."""
        plan = mock_plan_factory([("x", []), ("y", []), ("x2", ["x"])])

        assert get_next_task(plan).id == "x"
        plan = _complete(plan, "x")
        assert get_next_task(plan).id == "y"

    def test_failed_dependency_blocks_dependents(self, mock_plan_factory):
        """Tasks depending on a failed task are never scheduled."""
        plan = mock_plan_factory([("a", []), ("b", ["a"])])
        plan = plan.with_task("a", status=TaskStatus.FAILED)
        assert get_next_task(plan) is None

    @pytest.mark.parametrize(
        ("priority", "threshold", "expected"),
        [(1, 2, True), (2, 2, True), (3, 2, False), (1, 0, False)],
    )
    def test_is_critical(self, mock_task_factory, priority, threshold, expected):
        """Tasks at or below the threshold are critical."""
        assert is_critical(mock_task_factory(priority=priority), threshold) is expected
