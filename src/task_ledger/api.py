"""
FastAPI adapter for the task ledger services.

The organization and user come from trusted `X-Organization-Id` and
`X-User-Id` headers set by whatever authenticates requests upstream. Bodies
are validated by the pydantic request models; ledger errors are mapped to
status codes by a single exception handler.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .config import LedgerSettings, configure_logging
from .database import LedgerDatabase
from .documents import DocumentService
from .errors import LedgerError
from .models import (
    CreateDocumentRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    HealthResponse,
    ReorderTaskRequest,
    UpdateDocumentRequest,
    UpdateProjectRequest,
    UpdateTaskRequest,
    create_error_response,
)
from .projects import ProjectService
from .tasks import TaskService

logger = logging.getLogger(__name__)


class AccessContext(NamedTuple):
    organization_id: str
    user_id: str


def get_database(request: Request) -> LedgerDatabase:
    """
    FastAPI dependency to provide the app's database instance.

    Raises:
        HTTPException: If database is not available
    """
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def get_access_context(
    x_organization_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> AccessContext:
    if not x_organization_id or not x_user_id:
        raise HTTPException(status_code=401, detail="X-Organization-Id and X-User-Id headers are required")
    return AccessContext(x_organization_id, x_user_id)


def get_project_service(request: Request, db: LedgerDatabase = Depends(get_database)) -> ProjectService:
    settings: LedgerSettings = request.app.state.settings
    return ProjectService(db, settings.page_size, settings.max_page_size)


def get_task_service(request: Request, db: LedgerDatabase = Depends(get_database)) -> TaskService:
    settings: LedgerSettings = request.app.state.settings
    return TaskService(db, settings.page_size, settings.max_page_size)


def get_document_service(request: Request, db: LedgerDatabase = Depends(get_database)) -> DocumentService:
    settings: LedgerSettings = request.app.state.settings
    return DocumentService(db, settings.page_size, settings.max_page_size)


def _data(value: Any) -> Dict[str, Any]:
    if isinstance(value, list):
        return {"data": [item.model_dump() for item in value]}
    if hasattr(value, "model_dump"):
        return {"data": value.model_dump()}
    return {"data": value}


def create_app(database: Optional[LedgerDatabase] = None, settings: Optional[LedgerSettings] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        database: Store to serve; when omitted one is opened at startup from
            settings.database_path and closed at shutdown
        settings: Runtime settings, defaulting to LedgerSettings.from_env()
    """
    settings = settings or LedgerSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        owns_database = app.state.db is None
        if owns_database:
            try:
                app.state.db = LedgerDatabase(settings.database_path)
                logger.info(f"Database initialized: {settings.database_path}")
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

        logger.info("Task Ledger API starting up...")
        yield

        if owns_database and app.state.db is not None:
            app.state.db.close()
            app.state.db = None
            logger.info("Database connection closed")

    app = FastAPI(
        title="Task Ledger API",
        description="Versioned projects, tasks and documents with a task dependency graph",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.db = database
    app.state.settings = settings

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if exc.internal:
            logger.error(f"Internal error on {request.method} {request.url.path}: {exc.message} {exc.details}")
            return JSONResponse(
                status_code=exc.status_code,
                content=create_error_response("Internal server error", exc.code),
            )
        if exc.status_code >= 400:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(exc.message, exc.code, exc.details or None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/healthz", response_model=HealthResponse)
    async def health_check(db: LedgerDatabase = Depends(get_database)):
        """Report whether the database answers a trivial query."""
        database_connected = True
        try:
            db.ping()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database_connected = False

        return HealthResponse(
            status="healthy" if database_connected else "degraded",
            database_connected=database_connected,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    # Projects

    @app.post("/api/v1/projects", status_code=201)
    async def create_project(
        body: CreateProjectRequest,
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        project = projects.create_project(
            ctx.organization_id, ctx.user_id, name=body.name, key=body.key, body=body.body
        )
        return _data(project)

    @app.get("/api/v1/projects")
    async def list_projects(
        cursor: Optional[str] = None,
        limit: Optional[int] = Query(None),
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        return projects.list_projects(ctx.organization_id, cursor=cursor, limit=limit).model_dump()

    @app.get("/api/v1/projects/{key}")
    async def get_project(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        return _data(projects.get_project(ctx.organization_id, key))

    @app.patch("/api/v1/projects/{key}")
    async def update_project(
        key: str,
        body: UpdateProjectRequest,
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        project = projects.update_project(ctx.organization_id, ctx.user_id, key, name=body.name, body=body.body)
        return _data(project)

    @app.delete("/api/v1/projects/{key}")
    async def delete_project(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        return _data(projects.delete_project(ctx.organization_id, ctx.user_id, key))

    @app.get("/api/v1/projects/{key}/versions")
    async def get_project_versions(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        projects: ProjectService = Depends(get_project_service),
    ):
        return _data(projects.get_project_versions(ctx.organization_id, key))

    # Tasks

    @app.post("/api/v1/projects/{key}/tasks", status_code=201)
    async def create_task(
        key: str,
        body: CreateTaskRequest,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        task = tasks.create_task(ctx.organization_id, ctx.user_id, key, **body.model_dump())
        return _data(task)

    @app.get("/api/v1/projects/{key}/tasks")
    async def list_tasks(
        key: str,
        status: Optional[str] = None,
        type: Optional[str] = None,
        epic_key: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = Query(None),
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        page = tasks.list_tasks(
            ctx.organization_id,
            key,
            status=status,
            task_type=type,
            epic_key=epic_key,
            cursor=cursor,
            limit=limit,
        )
        return page.model_dump()

    @app.get("/api/v1/projects/{key}/tasks/ready")
    async def get_ready_tasks(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.get_ready_tasks(ctx.organization_id, key))

    @app.get("/api/v1/projects/{key}/tasks/graph")
    async def get_task_graph(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.get_task_graph(ctx.organization_id, key))

    @app.get("/api/v1/projects/{key}/tasks/board")
    async def get_board_tasks(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.list_board_tasks(ctx.organization_id, key))

    @app.get("/api/v1/projects/{key}/tasks/epics")
    async def get_epic_board(
        key: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.get_epic_board(ctx.organization_id, key))

    @app.get("/api/v1/tasks/{display_id}")
    async def get_task(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        task = tasks.get_task(ctx.organization_id, display_id)
        payload = _data(task)
        payload["data"]["depends_on"] = tasks.get_dependency_keys(ctx.organization_id, display_id)
        return payload

    @app.patch("/api/v1/tasks/{display_id}")
    async def update_task(
        display_id: str,
        body: UpdateTaskRequest,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        task = tasks.update_task(
            ctx.organization_id, ctx.user_id, display_id, body.model_dump(exclude_unset=True)
        )
        payload = _data(task)
        payload["data"]["depends_on"] = tasks.get_dependency_keys(ctx.organization_id, display_id)
        return payload

    @app.delete("/api/v1/tasks/{display_id}")
    async def delete_task(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.delete_task(ctx.organization_id, ctx.user_id, display_id))

    @app.patch("/api/v1/tasks/{display_id}/close")
    async def close_task(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.close_task(ctx.organization_id, ctx.user_id, display_id))

    @app.patch("/api/v1/tasks/{display_id}/reorder")
    async def reorder_task(
        display_id: str,
        body: ReorderTaskRequest,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.reorder_task(ctx.organization_id, ctx.user_id, display_id, body.position))

    @app.get("/api/v1/tasks/{display_id}/versions")
    async def get_task_versions(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.get_task_versions(ctx.organization_id, display_id))

    @app.get("/api/v1/tasks/{display_id}/breadcrumb")
    async def get_epic_breadcrumb(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        tasks: TaskService = Depends(get_task_service),
    ):
        return _data(tasks.get_epic_breadcrumb(ctx.organization_id, display_id))

    # Documents

    @app.post("/api/v1/projects/{key}/documents", status_code=201)
    async def create_document(
        key: str,
        body: CreateDocumentRequest,
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        document = documents.create_document(ctx.organization_id, ctx.user_id, key, body.title, body.body)
        return _data(document)

    @app.get("/api/v1/projects/{key}/documents")
    async def list_documents(
        key: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = Query(None),
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        return documents.list_documents(ctx.organization_id, key, cursor=cursor, limit=limit).model_dump()

    @app.get("/api/v1/documents/{display_id}")
    async def get_document(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        return _data(documents.get_document(ctx.organization_id, display_id))

    @app.patch("/api/v1/documents/{display_id}")
    async def update_document(
        display_id: str,
        body: UpdateDocumentRequest,
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        document = documents.update_document(
            ctx.organization_id, ctx.user_id, display_id, title=body.title, body=body.body
        )
        return _data(document)

    @app.delete("/api/v1/documents/{display_id}")
    async def delete_document(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        return _data(documents.delete_document(ctx.organization_id, ctx.user_id, display_id))

    @app.get("/api/v1/documents/{display_id}/versions")
    async def get_document_versions(
        display_id: str,
        ctx: AccessContext = Depends(get_access_context),
        documents: DocumentService = Depends(get_document_service),
    ):
        return _data(documents.get_document_versions(ctx.organization_id, display_id))

    return app


app = create_app()
