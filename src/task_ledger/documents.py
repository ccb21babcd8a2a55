"""
Document operations over the versioned store.
"""

import logging
from typing import Any, Dict, List, Optional

from .config import DEFAULT_MAX_PAGE_SIZE, DEFAULT_PAGE_SIZE
from .database import DOCUMENTS, PROJECTS, LedgerDatabase
from .errors import ConflictError, NotFoundError
from .ids import MAX_DISPLAY_ID_ATTEMPTS, new_document_id
from .models import Document, Page
from .pagination import decode_cursor, resolve_limit, split_page

logger = logging.getLogger(__name__)


class DocumentService:
    """Project-scoped documents with full edit history."""

    def __init__(
        self,
        db: LedgerDatabase,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
    ):
        self.db = db
        self.page_size = page_size
        self.max_page_size = max_page_size

    def _require_project(self, organization_id: str, project_key: str) -> Dict[str, Any]:
        row = self.db.get_current_by_key(PROJECTS, organization_id, project_key)
        if row is None:
            raise NotFoundError("Project not found")
        return row

    def _require_document(self, organization_id: str, display_id: str) -> Dict[str, Any]:
        row = self.db.get_current_by_key(DOCUMENTS, organization_id, display_id)
        if row is None:
            raise NotFoundError("Document not found")
        return row

    def create_document(
        self, organization_id: str, user_id: str, project_key: str, title: str, body: str = ""
    ) -> Document:
        """
        Create a document under a project with a fresh display id.

        Raises:
            NotFoundError: If the project does not exist
            ConflictError: If no unused display id was found
        """
        with self.db.transaction():
            project = self._require_project(organization_id, project_key)
            for _ in range(MAX_DISPLAY_ID_ATTEMPTS):
                display_id = new_document_id(project["key"])
                if self.db.find_entity_id(DOCUMENTS, organization_id, display_id) is None:
                    break
            else:
                raise ConflictError(
                    f"Could not allocate a document id in {project_key} "
                    f"after {MAX_DISPLAY_ID_ATTEMPTS} attempts"
                )

            row = self.db.insert_first_version(
                DOCUMENTS,
                {
                    "organization_id": organization_id,
                    "project_id": project["project_id"],
                    "key": display_id,
                    "title": title,
                    "body": body,
                },
                user_id,
            )

        logger.info(f"Document {display_id} created by {user_id}")
        return Document(**row)

    def get_document(self, organization_id: str, display_id: str) -> Document:
        return Document(**self._require_document(organization_id, display_id))

    def list_documents(
        self,
        organization_id: str,
        project_key: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page[Document]:
        limit = resolve_limit(limit, self.page_size, self.max_page_size)
        after = decode_cursor(cursor) if cursor else None
        project = self._require_project(organization_id, project_key)
        rows = self.db.list_current_documents(project["project_id"], organization_id, after, limit + 1)
        page, next_cursor = split_page(rows, limit, DOCUMENTS.id_column)
        return Page[Document](data=[Document(**row) for row in page], next_cursor=next_cursor)

    def update_document(
        self,
        organization_id: str,
        user_id: str,
        display_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> Document:
        changes = {field: value for field, value in (("title", title), ("body", body)) if value is not None}
        with self.db.transaction():
            current = self._require_document(organization_id, display_id)
            if not changes:
                return Document(**current)
            row = self.db.append_version(DOCUMENTS, current, changes, user_id)

        logger.info(f"Document {display_id} updated to v{row['version']} by {user_id}")
        return Document(**row)

    def delete_document(self, organization_id: str, user_id: str, display_id: str) -> Document:
        with self.db.transaction():
            current = self._require_document(organization_id, display_id)
            row = self.db.append_version(DOCUMENTS, current, {}, user_id, deleted=True)

        logger.info(f"Document {display_id} deleted by {user_id}")
        return Document(**row)

    def get_document_versions(self, organization_id: str, display_id: str) -> List[Document]:
        document_id = self.db.find_entity_id(DOCUMENTS, organization_id, display_id)
        if document_id is None:
            raise NotFoundError("Document not found")
        return [Document(**row) for row in self.db.list_versions(DOCUMENTS, document_id)]
