"""
Tests for the ready-set calculator on in-memory snapshots.
"""

import random

from task_ledger.models import Task
from task_ledger.ready import compute_ready_tasks, is_blocked


def make_task(task_id, status="open", type="task", epic_key=None):
    return Task(
        task_id=task_id,
        project_id="p1",
        key=f"KEY-{task_id}",
        title=f"Task {task_id}",
        type=type,
        status=None if type == "epic" else status,
        epic_key=epic_key,
        version=1,
        organization_id="org",
        is_current=True,
        created_by_user_id="user",
        created_at="2024-01-01T00:00:00.000000Z",
    )


def ready_ids(tasks, edges):
    return [task.task_id for task in compute_ready_tasks(tasks, edges)]


class TestIsBlocked:

    def test_no_dependencies(self):
        assert not is_blocked("A", [], {})

    def test_open_dependency_blocks(self):
        assert is_blocked("B", ["A"], {"A": "open"})
        assert is_blocked("B", ["A"], {"A": "in_progress"})

    def test_closed_dependencies_unblock(self):
        assert not is_blocked("C", ["A", "B"], {"A": "closed", "B": "closed"})

    def test_missing_dependency_blocks(self):
        assert is_blocked("B", ["GONE"], {"A": "closed"})


class TestComputeReadyTasks:

    def test_diamond_scenario(self):
        edges = [("B", "A"), ("C", "A"), ("D", "B"), ("D", "C")]
        statuses = {"A": "open", "B": "open", "C": "open", "D": "open"}

        def snapshot():
            return [make_task(task_id, status) for task_id, status in statuses.items()]

        assert ready_ids(snapshot(), edges) == ["A"]
        statuses["A"] = "closed"
        assert ready_ids(snapshot(), edges) == ["B", "C"]
        statuses["B"] = "closed"
        statuses["C"] = "closed"
        assert ready_ids(snapshot(), edges) == ["D"]

    def test_epics_and_closed_tasks_never_ready(self):
        tasks = [make_task("E", type="epic"), make_task("A", "closed"), make_task("B", "in_progress")]
        assert ready_ids(tasks, []) == ["B"]

    def test_dependency_on_absent_task_is_unmet(self):
        tasks = [make_task("A")]
        assert ready_ids(tasks, [("A", "DELETED")]) == []

    def test_result_is_topologically_ordered(self):
        tasks = [make_task(t) for t in ("Z", "Y", "X")]
        assert ready_ids(tasks, []) == ["X", "Y", "Z"]

    def test_ready_tasks_have_only_closed_dependencies(self):
        rng = random.Random(3)
        ids = [f"T{i:02d}" for i in range(12)]
        edges = [(ids[i], ids[j]) for i in range(12) for j in range(i) if rng.random() < 0.25]
        tasks = [make_task(t, rng.choice(["open", "in_progress", "closed"])) for t in ids]
        status = {task.task_id: task.status for task in tasks}

        for task in compute_ready_tasks(tasks, edges):
            assert task.status != "closed"
            for source, target in edges:
                if source == task.task_id:
                    assert status[target] == "closed"

    def test_closing_a_task_never_removes_other_ready_tasks(self):
        rng = random.Random(11)
        ids = [f"T{i:02d}" for i in range(10)]
        edges = [(ids[i], ids[j]) for i in range(10) for j in range(i) if rng.random() < 0.3]
        statuses = {t: "open" for t in ids}

        for closing in rng.sample(ids, len(ids)):
            before = set(ready_ids([make_task(t, s) for t, s in statuses.items()], edges))
            statuses[closing] = "closed"
            after = set(ready_ids([make_task(t, s) for t, s in statuses.items()], edges))
            assert before - {closing} <= after
