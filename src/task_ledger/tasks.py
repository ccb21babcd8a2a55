"""
Task and epic operations, including the dependency graph.

Every graph computation reloads the project's current tasks and edges from
the store; nothing is cached between calls.
"""

import logging
import math
from typing import Any, Dict, List, Optional, get_args

from .config import DEFAULT_MAX_PAGE_SIZE, DEFAULT_PAGE_SIZE
from .dag import topological_sort, validate_dag
from .database import PROJECTS, TASKS, LedgerDatabase
from .epics import build_epic_breadcrumb, group_tasks_by_epic
from .errors import ConflictError, NotFoundError, ValidationError
from .ids import MAX_DISPLAY_ID_ATTEMPTS, new_task_id
from .models import EpicBoard, GraphEdge, GraphNode, Page, Task, TaskGraph, TaskStatus, TaskType
from .pagination import decode_cursor, resolve_limit, split_page
from .ready import compute_ready_tasks

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "status", "priority", "epic_key", "body")
TASK_TYPES = get_args(TaskType)
TASK_STATUSES = get_args(TaskStatus)
MIN_PRIORITY, MAX_PRIORITY = 0, 3


def validate_task_fields(
    type: Optional[str] = None, status: Optional[str] = None, priority: Optional[int] = None
) -> None:
    """
    Check enumerated and ranged task fields before they reach the store.

    None means "not set" for every argument.

    Raises:
        ValidationError: If a value is outside its allowed set or range
    """
    if type is not None and type not in TASK_TYPES:
        raise ValidationError(f"Invalid task type: {type!r}")
    if status is not None and status not in TASK_STATUSES:
        raise ValidationError(f"Invalid task status: {status!r}")
    if priority is not None:
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError(f"Priority must be an integer, got {priority!r}")
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValidationError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")


class TaskService:
    """Tasks, epics and the dependency edges between tasks."""

    def __init__(
        self,
        db: LedgerDatabase,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
    ):
        self.db = db
        self.page_size = page_size
        self.max_page_size = max_page_size

    # Lookups

    def _require_project(self, organization_id: str, project_key: str) -> Dict[str, Any]:
        row = self.db.get_current_by_key(PROJECTS, organization_id, project_key)
        if row is None:
            raise NotFoundError("Project not found")
        return row

    def _require_task(self, organization_id: str, display_id: str) -> Dict[str, Any]:
        row = self.db.get_current_by_key(TASKS, organization_id, display_id)
        if row is None:
            raise NotFoundError("Task not found")
        return row

    def _require_epic(self, organization_id: str, project_id: str, epic_key: str) -> Dict[str, Any]:
        row = self.db.get_current_by_key(TASKS, organization_id, epic_key)
        if row is None or row["project_id"] != project_id or row["type"] != "epic":
            raise ValidationError(f"Epic {epic_key} not found in this project")
        return row

    def _to_task(self, row: Dict[str, Any]) -> Task:
        if "position" not in row:
            row = dict(row, position=self.db.get_position(row["task_id"]))
        return Task(**row)

    def _load_snapshot(self, project: Dict[str, Any]) -> List[Task]:
        rows = self.db.load_project_tasks(project["project_id"], project["organization_id"])
        return [Task(**row) for row in rows]

    # CRUD

    def create_task(
        self,
        organization_id: str,
        user_id: str,
        project_key: str,
        title: str,
        type: str = "task",
        status: Optional[str] = None,
        priority: Optional[int] = None,
        epic_key: Optional[str] = None,
        body: str = "",
        depends_on: Optional[List[str]] = None,
    ) -> Task:
        """
        Create a task or epic under a project.

        Plain tasks default to status "open" and are placed at the end of
        the board. Epics never carry a status, a parent epic or dependencies.

        Raises:
            NotFoundError: If the project does not exist
            ValidationError: For an out-of-range type, status or priority,
                epic rule violations, an unknown epic_key or an invalid
                dependency set
            ConflictError: If no unused display id was found
        """
        validate_task_fields(type=type, status=status, priority=priority)
        if type == "epic":
            if status is not None:
                raise ValidationError("Epics cannot have a status")
            if epic_key:
                raise ValidationError("Epics cannot have a parent epic")
            if depends_on:
                raise ValidationError("Epics cannot have dependencies")
        elif status is None:
            status = "open"

        with self.db.transaction():
            project = self._require_project(organization_id, project_key)
            if epic_key:
                self._require_epic(organization_id, project["project_id"], epic_key)
            dependency_ids: List[str] = []
            if depends_on:
                draft = {"key": None, "type": type, "organization_id": organization_id,
                         "project_id": project["project_id"]}
                dependency_ids = self._resolve_dependencies(draft, depends_on)

            for _ in range(MAX_DISPLAY_ID_ATTEMPTS):
                display_id = new_task_id(project["key"])
                if self.db.find_entity_id(TASKS, organization_id, display_id) is None:
                    break
            else:
                raise ConflictError(
                    f"Could not allocate a task id in {project_key} after {MAX_DISPLAY_ID_ATTEMPTS} attempts"
                )

            row = self.db.insert_first_version(
                TASKS,
                {
                    "organization_id": organization_id,
                    "project_id": project["project_id"],
                    "key": display_id,
                    "title": title,
                    "type": type,
                    "status": status,
                    "priority": priority,
                    "epic_key": epic_key,
                    "body": body,
                },
                user_id,
            )

            position = None
            if type == "task":
                position = self.db.next_position(project["project_id"])
                self.db.set_position(row["task_id"], position)

            # A new task has no dependents, so its edges cannot close a cycle
            if dependency_ids:
                self.db.replace_dependencies(row["task_id"], dependency_ids)

        logger.info(f"{type.capitalize()} {display_id} created in {project_key} by {user_id}")
        return Task(**row, position=position)

    def get_task(self, organization_id: str, display_id: str) -> Task:
        return self._to_task(self._require_task(organization_id, display_id))

    def list_tasks(
        self,
        organization_id: str,
        project_key: str,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        epic_key: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page[Task]:
        """List current tasks newest first with optional filters."""
        limit = resolve_limit(limit, self.page_size, self.max_page_size)
        after = decode_cursor(cursor) if cursor else None
        project = self._require_project(organization_id, project_key)
        rows = self.db.list_current_tasks(
            project["project_id"],
            organization_id,
            status=status,
            task_type=task_type,
            epic_key=epic_key,
            after=after,
            limit=limit + 1,
        )
        page, next_cursor = split_page(rows, limit, TASKS.id_column)
        return Page[Task](data=[Task(**row) for row in page], next_cursor=next_cursor)

    def list_board_tasks(self, organization_id: str, project_key: str) -> List[Task]:
        """Return the project's plain tasks in board position order."""
        project = self._require_project(organization_id, project_key)
        rows = self.db.list_board_tasks(project["project_id"], organization_id)
        return [Task(**row) for row in rows]

    def update_task(
        self, organization_id: str, user_id: str, display_id: str, changes: Dict[str, Any]
    ) -> Task:
        """
        Apply a partial update and optionally replace the dependency set.

        `changes` holds only the fields the caller supplied. A "depends_on"
        entry replaces the task's dependencies in the same transaction; it is
        validated before the field update is written. Title and body cannot
        be cleared; priority and epic_key can be set to None.

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: For an out-of-range status or priority, epic
                rule violations or a rejected
                dependency set
        """
        changes = dict(changes)
        depends_on = changes.pop("depends_on", None)
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown task fields: {sorted(unknown)}")
        for field in ("title", "body"):
            if field in changes and changes[field] is None:
                del changes[field]
        validate_task_fields(status=changes.get("status"), priority=changes.get("priority"))

        with self.db.transaction():
            current = self._require_task(organization_id, display_id)

            if current["type"] == "epic":
                if changes.get("status") is not None:
                    raise ValidationError("Epics cannot have a status")
                if changes.get("epic_key"):
                    raise ValidationError("Epics cannot have a parent epic")
            elif "status" in changes and changes["status"] is None:
                raise ValidationError("Tasks must have a status")

            if changes.get("epic_key"):
                self._require_epic(organization_id, current["project_id"], changes["epic_key"])

            dependency_ids = None
            if depends_on is not None:
                dependency_ids = self._resolve_dependencies(current, depends_on)
                self._check_acyclic(current, dependency_ids)

            row = current
            if changes:
                row = self.db.append_version(TASKS, current, changes, user_id)
            if dependency_ids is not None:
                self.db.replace_dependencies(current["task_id"], dependency_ids)

        if changes:
            logger.info(f"Task {display_id} updated to v{row['version']} by {user_id}: {sorted(changes)}")
        return self._to_task(row)

    def close_task(self, organization_id: str, user_id: str, display_id: str) -> Task:
        """Set a task's status to closed. Closing a closed task is a no-op."""
        with self.db.transaction():
            current = self._require_task(organization_id, display_id)
            if current["type"] == "epic":
                raise ValidationError("Epics cannot be closed")
            if current["status"] == "closed":
                return self._to_task(current)
            row = self.db.append_version(TASKS, current, {"status": "closed"}, user_id)

        logger.info(f"Task {display_id} closed by {user_id}")
        return self._to_task(row)

    def delete_task(self, organization_id: str, user_id: str, display_id: str) -> Task:
        """
        Append the terminal version of a task and drop its board position.

        Dependency edges are kept, so tasks that depended on it stay blocked
        until their dependency set is changed.
        """
        with self.db.transaction():
            current = self._require_task(organization_id, display_id)
            row = self.db.append_version(TASKS, current, {}, user_id, deleted=True)
            self.db.delete_positions([current["task_id"]])

        logger.info(f"Task {display_id} deleted by {user_id}")
        return Task(**row)

    def get_task_versions(self, organization_id: str, display_id: str) -> List[Task]:
        task_id = self.db.find_entity_id(TASKS, organization_id, display_id)
        if task_id is None:
            raise NotFoundError("Task not found")
        return [Task(**row) for row in self.db.list_versions(TASKS, task_id)]

    def reorder_task(self, organization_id: str, user_id: str, display_id: str, position: float) -> Task:
        """Move a plain task to a new board position."""
        if not math.isfinite(position):
            raise ValidationError("position must be a finite number")
        with self.db.transaction():
            current = self._require_task(organization_id, display_id)
            if current["type"] == "epic":
                raise ValidationError("Epics do not have a board position")
            self.db.set_position(current["task_id"], position)

        logger.info(f"Task {display_id} moved to position {position} by {user_id}")
        return Task(**current, position=position)

    # Dependencies

    def _resolve_dependencies(self, task: Dict[str, Any], depends_on_keys: List[str]) -> List[str]:
        """Map dependency display keys to task ids, enforcing endpoint rules."""
        keys = list(dict.fromkeys(depends_on_keys))
        if task["type"] == "epic" and keys:
            raise ValidationError("Epics cannot have dependencies")

        dependency_ids: List[str] = []
        for key in keys:
            if key == task["key"]:
                raise ValidationError("Task cannot depend on itself")
            dependency = self.db.get_current_by_key(TASKS, task["organization_id"], key)
            if dependency is None or dependency["project_id"] != task["project_id"]:
                raise ValidationError(f"Dependency {key} not found in this project")
            if dependency["type"] == "epic":
                raise ValidationError("Cannot depend on an epic")
            dependency_ids.append(dependency["task_id"])
        return dependency_ids

    def _check_acyclic(self, task: Dict[str, Any], dependency_ids: List[str]) -> None:
        """
        Reject a dependency set that would close a cycle.

        The proposed edge set is the project's current edges with this
        task's outgoing edges replaced. It is validated and sorted before
        anything is written.
        """
        rows = self.db.load_project_tasks(task["project_id"], task["organization_id"])
        key_by_id = {row["task_id"]: row["key"] for row in rows}
        nodes = list(key_by_id)
        proposed = [edge for edge in self.db.load_project_edges(task["project_id"], task["organization_id"])
                    if edge[0] != task["task_id"]]
        proposed.extend((task["task_id"], dep_id) for dep_id in dependency_ids)

        result = validate_dag(nodes, proposed)
        if not result.valid:
            cycle_keys = [key_by_id[node] for node in result.cycle]
            logger.info(f"Rejected dependencies for {task['key']}: cycle {' -> '.join(cycle_keys)}")
            raise ValidationError(f"Cycle detected: {' -> '.join(cycle_keys)}", cycle=cycle_keys)
        topological_sort(nodes, proposed)

    def update_task_dependencies(
        self, organization_id: str, user_id: str, display_id: str, depends_on: List[str]
    ) -> List[str]:
        """
        Replace a task's dependency set with the given display keys.

        Load, validation and write share one immediate transaction, so two
        concurrent updates cannot together introduce a cycle.

        Returns:
            The stored dependency keys, duplicates removed

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: On self-dependency, an epic endpoint, an unknown
                key or a cycle (the error carries the cycle path)
        """
        keys = list(dict.fromkeys(depends_on))
        with self.db.transaction():
            task = self._require_task(organization_id, display_id)
            dependency_ids = self._resolve_dependencies(task, keys)
            self._check_acyclic(task, dependency_ids)
            self.db.replace_dependencies(task["task_id"], dependency_ids)

        logger.info(f"Dependencies of {display_id} set to {keys} by {user_id}")
        return keys

    def get_dependency_keys(self, organization_id: str, display_id: str) -> List[str]:
        """Return the display keys a task depends on, including deleted ones."""
        task = self._require_task(organization_id, display_id)
        dependency_ids = self.db.get_dependency_ids([task["task_id"]])[task["task_id"]]
        keys = []
        for dep_id in dependency_ids:
            row = self.db.get_current_by_id(TASKS, dep_id)
            if row is None:
                versions = self.db.list_versions(TASKS, dep_id)
                if not versions:
                    continue
                row = versions[0]
            keys.append(row["key"])
        return keys

    # Graph views

    def get_ready_tasks(self, organization_id: str, project_key: str) -> List[Task]:
        """Return open or in-progress tasks whose dependencies are all closed."""
        project = self._require_project(organization_id, project_key)
        tasks = self._load_snapshot(project)
        edges = self.db.load_project_edges(project["project_id"], organization_id)
        return compute_ready_tasks(tasks, edges)

    def get_task_graph(self, organization_id: str, project_key: str) -> TaskGraph:
        """Return every current task as a node, live edges, and a topological order."""
        project = self._require_project(organization_id, project_key)
        tasks = self._load_snapshot(project)
        known = {task.task_id for task in tasks}
        edges = [
            (source, target)
            for source, target in self.db.load_project_edges(project["project_id"], organization_id)
            if source in known and target in known
        ]
        order = topological_sort([task.task_id for task in tasks], edges)
        return TaskGraph(
            nodes=[
                GraphNode(
                    task_id=task.task_id,
                    key=task.key,
                    title=task.title,
                    type=task.type,
                    status=task.status,
                    priority=task.priority,
                    epic_key=task.epic_key,
                )
                for task in tasks
            ],
            edges=[GraphEdge(from_task_id=source, to_task_id=target) for source, target in edges],
            order=order,
        )

    def get_epic_board(self, organization_id: str, project_key: str) -> EpicBoard:
        """Group the project's tasks under their epics with progress counts."""
        project = self._require_project(organization_id, project_key)
        snapshot = self._load_snapshot(project)
        epics = [task for task in snapshot if task.type == "epic"]
        tasks = sorted(
            (task for task in snapshot if task.type == "task"),
            key=lambda task: (task.position or 0.0, task.created_at, task.task_id),
        )
        return group_tasks_by_epic(tasks, epics)

    def get_epic_breadcrumb(self, organization_id: str, display_id: str) -> Optional[str]:
        """
        Return the epic path of a task, for example "Platform > Auth".

        For an epic the path ends at the epic itself; for a task without a
        current epic the result is None.
        """
        task = self._require_task(organization_id, display_id)
        rows = self.db.load_project_tasks(task["project_id"], organization_id)
        epic_map = {row["key"]: Task(**row) for row in rows if row["type"] == "epic"}
        start = task["key"] if task["type"] == "epic" else task["epic_key"]
        return build_epic_breadcrumb(start, epic_map)
