"""
Project operations over the versioned store.
"""

import logging
from typing import Any, Dict, List, Optional

from .config import DEFAULT_MAX_PAGE_SIZE, DEFAULT_PAGE_SIZE
from .database import DOCUMENTS, PROJECTS, TASKS, LedgerDatabase
from .errors import ConflictError, NotFoundError
from .ids import generate_key, key_candidates, validate_key
from .models import Page, Project
from .pagination import decode_cursor, resolve_limit, split_page

logger = logging.getLogger(__name__)


class ProjectService:
    """Create, read, update and delete projects for one store."""

    def __init__(
        self,
        db: LedgerDatabase,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
    ):
        self.db = db
        self.page_size = page_size
        self.max_page_size = max_page_size

    def require_project(self, organization_id: str, key: str) -> Dict[str, Any]:
        """Return the current project row or raise NotFoundError."""
        row = self.db.get_current_by_key(PROJECTS, organization_id, key)
        if row is None:
            raise NotFoundError("Project not found")
        return row

    def create_project(
        self,
        organization_id: str,
        user_id: str,
        name: str,
        key: Optional[str] = None,
        body: str = "",
    ) -> Project:
        """
        Create a project, deriving its key from the name when none is given.

        Explicit and derived keys go through the same collision fallback:
        the key itself, then its first four characters plus a digit 2..9.

        Raises:
            ValidationError: If the name or explicit key is unusable
            ConflictError: If every candidate key is taken
        """
        base_key = key if key else generate_key(name)
        validate_key(base_key)

        with self.db.transaction():
            for candidate in key_candidates(base_key):
                if not self.db.key_in_use(PROJECTS, organization_id, candidate):
                    break
            else:
                raise ConflictError(f'Project key "{base_key}" and all numbered fallbacks are in use')

            row = self.db.insert_first_version(
                PROJECTS,
                {"organization_id": organization_id, "key": candidate, "name": name, "body": body},
                user_id,
            )

        logger.info(f"Project {candidate} created in org {organization_id} by {user_id}")
        return Project(**row)

    def get_project(self, organization_id: str, key: str) -> Project:
        return Project(**self.require_project(organization_id, key))

    def list_projects(
        self, organization_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[Project]:
        """List current projects newest first, one page at a time."""
        limit = resolve_limit(limit, self.page_size, self.max_page_size)
        after = decode_cursor(cursor) if cursor else None
        rows = self.db.list_current_projects(organization_id, after, limit + 1)
        page, next_cursor = split_page(rows, limit, PROJECTS.id_column)
        return Page[Project](data=[Project(**row) for row in page], next_cursor=next_cursor)

    def update_project(
        self,
        organization_id: str,
        user_id: str,
        key: str,
        name: Optional[str] = None,
        body: Optional[str] = None,
    ) -> Project:
        """Append a new project version; None leaves a field unchanged."""
        changes = {field: value for field, value in (("name", name), ("body", body)) if value is not None}
        with self.db.transaction():
            current = self.require_project(organization_id, key)
            if not changes:
                return Project(**current)
            row = self.db.append_version(PROJECTS, current, changes, user_id)

        logger.info(f"Project {key} updated to v{row['version']} by {user_id}: {sorted(changes)}")
        return Project(**row)

    def delete_project(self, organization_id: str, user_id: str, key: str) -> Project:
        """
        Delete a project with its current tasks and documents.

        Each child gets a terminal deleted version, edges touching the tasks
        are soft-deleted and board positions removed. All of it commits or
        rolls back together.
        """
        with self.db.transaction():
            current = self.require_project(organization_id, key)
            project_id = current["project_id"]

            tasks = self.db.list_current_ids(TASKS, project_id)
            documents = self.db.list_current_ids(DOCUMENTS, project_id)
            for task in tasks:
                self.db.append_version(TASKS, task, {}, user_id, deleted=True)
            for document in documents:
                self.db.append_version(DOCUMENTS, document, {}, user_id, deleted=True)

            task_ids = [task["task_id"] for task in tasks]
            self.db.soft_delete_edges(task_ids)
            self.db.delete_positions(task_ids)

            row = self.db.append_version(PROJECTS, current, {}, user_id, deleted=True)

        logger.info(
            f"Project {key} deleted by {user_id} with {len(tasks)} tasks and {len(documents)} documents"
        )
        return Project(**row)

    def get_project_versions(self, organization_id: str, key: str) -> List[Project]:
        """Return every version of a project newest first, including a deletion."""
        project_id = self.db.find_entity_id(PROJECTS, organization_id, key)
        if project_id is None:
            raise NotFoundError("Project not found")
        return [Project(**row) for row in self.db.list_versions(PROJECTS, project_id)]
