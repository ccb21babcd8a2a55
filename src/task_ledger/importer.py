"""
YAML Project Importer

Creates a whole project (epics, tasks and their dependencies) from one YAML
document inside a single transaction. Items refer to each other through
local `ref` names, so a file can be written before any display ids exist.

Example:

    project:
      name: Auth Service
    epics:
      - ref: login
        title: Login flow
        tasks:
          - ref: form
            title: Build login form
          - ref: api
            title: Wire login API
            depends_on: [form]
    tasks:
      - ref: docs
        title: Write docs
        depends_on: [api]
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .database import LedgerDatabase
from .errors import ValidationError
from .projects import ProjectService
from .tasks import TaskService

logger = logging.getLogger(__name__)

TASK_FIELDS = ("status", "priority", "body")


def _require_list(data: Dict[str, Any], field: str, where: str) -> List[Any]:
    value = data.get(field, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"YAML '{field}' in {where} must be a list")
    return value


def _require_mapping(item: Any, where: str) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise ValidationError(f"{where} must be a mapping")
    if not item.get("title"):
        raise ValidationError(f"{where} requires a title")
    return item


def import_project(
    db: LedgerDatabase, yaml_data: Dict[str, Any], organization_id: str, user_id: str
) -> Dict[str, Any]:
    """
    Import a project structure parsed from YAML.

    Args:
        db: LedgerDatabase instance
        yaml_data: Parsed YAML document
        organization_id: Organization that will own the project
        user_id: User recorded on every created row

    Returns:
        Dict with the project key, created counts and a ref -> display id map

    Raises:
        ValidationError: For malformed structure, duplicate or unknown refs,
            or a dependency set that is rejected (for example a cycle)
        NotFoundError, ConflictError: Propagated from the services
    """
    if not isinstance(yaml_data, dict):
        raise ValidationError("YAML document must be a mapping")
    project_data = yaml_data.get("project")
    if not isinstance(project_data, dict) or not project_data.get("name"):
        raise ValidationError("YAML 'project' must be a mapping with a name")

    projects = ProjectService(db)
    tasks = TaskService(db)

    stats = {"project_key": None, "epics_created": 0, "tasks_created": 0, "dependencies_set": 0, "refs": {}}
    refs: Dict[str, str] = stats["refs"]
    pending_dependencies: List[Tuple[str, List[str]]] = []

    def register(item: Dict[str, Any], display_id: str) -> None:
        ref = item.get("ref")
        if ref is None:
            return
        if not isinstance(ref, str):
            raise ValidationError(f"ref of '{item['title']}' must be a string, got {ref!r}")
        if ref in refs:
            raise ValidationError(f"Duplicate ref '{ref}'")
        refs[ref] = display_id

    def create_plain_task(item: Dict[str, Any], project_key: str, epic_key: Optional[str] = None) -> None:
        created = tasks.create_task(
            organization_id,
            user_id,
            project_key,
            title=item["title"],
            epic_key=epic_key,
            **{field: item[field] for field in TASK_FIELDS if field in item},
        )
        register(item, created.key)
        stats["tasks_created"] += 1
        depends_on = _require_list(item, "depends_on", f"task '{item['title']}'")
        bad = [ref for ref in depends_on if not isinstance(ref, str)]
        if bad:
            raise ValidationError(f"depends_on of '{item['title']}' must list ref strings, got {bad!r}")
        if depends_on:
            pending_dependencies.append((created.key, depends_on))

    with db.transaction():
        project = projects.create_project(
            organization_id,
            user_id,
            name=project_data["name"],
            key=project_data.get("key"),
            body=project_data.get("body", ""),
        )
        stats["project_key"] = project.key

        for epic_item in _require_list(yaml_data, "epics", "document"):
            epic_item = _require_mapping(epic_item, "Epic")
            epic = tasks.create_task(
                organization_id,
                user_id,
                project.key,
                title=epic_item["title"],
                type="epic",
                status=epic_item.get("status"),
                epic_key=epic_item.get("epic_key"),
                body=epic_item.get("body", ""),
                depends_on=epic_item.get("depends_on"),
            )
            register(epic_item, epic.key)
            stats["epics_created"] += 1

            for task_item in _require_list(epic_item, "tasks", f"epic '{epic_item['title']}'"):
                create_plain_task(_require_mapping(task_item, "Task"), project.key, epic.key)

        for task_item in _require_list(yaml_data, "tasks", "document"):
            create_plain_task(_require_mapping(task_item, "Task"), project.key)

        # Dependencies go last so refs may point forward
        for display_id, dependency_refs in pending_dependencies:
            unknown = [ref for ref in dependency_refs if ref not in refs]
            if unknown:
                raise ValidationError(f"Unknown dependency refs for {display_id}: {unknown}")
            stored = tasks.update_task_dependencies(
                organization_id, user_id, display_id, [refs[ref] for ref in dependency_refs]
            )
            stats["dependencies_set"] += len(stored)

    logger.info(
        f"Imported project {stats['project_key']}: {stats['epics_created']} epics, "
        f"{stats['tasks_created']} tasks, {stats['dependencies_set']} dependencies"
    )
    return stats


def import_project_from_file(
    db: LedgerDatabase, yaml_file_path: str, organization_id: str, user_id: str
) -> Dict[str, Any]:
    """
    Import a project from a YAML file path.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the file is not valid YAML or is malformed
    """
    try:
        with open(yaml_file_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML format: {e}")

    return import_project(db, yaml_data, organization_id, user_id)
