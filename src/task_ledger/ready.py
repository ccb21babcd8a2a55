"""
Ready-set calculation: which tasks can be worked on right now.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .dag import Edge, topological_sort
from .models import Task


def is_blocked(task_id: str, dependency_ids: Iterable[str], status_by_id: Mapping[str, Optional[str]]) -> bool:
    """
    Return True if any dependency of `task_id` is not closed.

    A dependency missing from `status_by_id` counts as not closed.
    """
    return any(status_by_id.get(dep) != "closed" for dep in dependency_ids)


def compute_ready_tasks(tasks: Sequence[Task], edges: Iterable[Edge]) -> List[Task]:
    """
    Return the ready tasks of a project snapshot in topological order.

    A task is ready when it is a plain task (never an epic), is not closed,
    and every task it depends on is present in `tasks` and closed.

    Args:
        tasks: Every current task and epic of the project
        edges: Current (task_id, depends_on_task_id) pairs

    Raises:
        GraphStructureError: If the stored edges contain a cycle
    """
    by_id: Dict[str, Task] = {task.task_id: task for task in tasks}
    dependencies: Dict[str, List[str]] = defaultdict(list)
    edge_list = list(edges)
    for source, target in edge_list:
        dependencies[source].append(target)

    status_by_id = {task_id: task.status for task_id, task in by_id.items()}
    order = topological_sort(by_id.keys(), edge_list)

    ready: List[Task] = []
    for task_id in order:
        task = by_id[task_id]
        if task.type != "task" or task.status == "closed":
            continue
        if is_blocked(task_id, dependencies.get(task_id, ()), status_by_id):
            continue
        ready.append(task)
    return ready
