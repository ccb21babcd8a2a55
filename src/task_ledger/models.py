"""
Pydantic models for ledger records and API request/response validation.

Record models mirror one version row of a versioned table. Request models
validate JSON bodies before they reach the services.
"""

from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

T = TypeVar("T")

TaskType = Literal["task", "epic"]
TaskStatus = Literal["open", "in_progress", "closed"]


class VersionedRecord(BaseModel):
    """Columns shared by every version row."""

    version: int
    organization_id: str
    key: str
    is_current: bool
    created_by_user_id: str
    created_at: str
    deleted_at: Optional[str] = None


class Project(VersionedRecord):
    project_id: str
    name: str
    body: str = ""


class Task(VersionedRecord):
    task_id: str
    project_id: str
    title: str
    type: TaskType = "task"
    status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    epic_key: Optional[str] = None
    body: str = ""
    position: Optional[float] = None


class Document(VersionedRecord):
    document_id: str
    project_id: str
    title: str
    body: str = ""


class Page(BaseModel, Generic[T]):
    """One page of a seek-paginated listing."""

    data: List[T]
    next_cursor: Optional[str] = None


class GraphNode(BaseModel):
    task_id: str
    key: str
    title: str
    type: TaskType
    status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    epic_key: Optional[str] = None


class GraphEdge(BaseModel):
    """`from_task_id` depends on `to_task_id`."""

    from_task_id: str
    to_task_id: str


class TaskGraph(BaseModel):
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    order: List[str] = Field(default_factory=list, description="Task ids in topological order")


class EpicSection(BaseModel):
    """An epic with its direct tasks and nested child epics."""

    epic: Task
    tasks: List[Task] = Field(default_factory=list)
    sub_epics: List["EpicSection"] = Field(default_factory=list)
    closed_count: int = 0
    total_count: int = 0


EpicSection.model_rebuild()


class EpicBoard(BaseModel):
    sections: List[EpicSection]
    unassigned: List[Task]


# Request models


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    key: Optional[str] = Field(None, min_length=2, max_length=5)
    body: str = ""


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    body: Optional[str] = None


class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    type: TaskType = "task"
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(None, ge=0, le=3)
    epic_key: Optional[str] = None
    body: str = ""
    depends_on: Optional[List[str]] = None


class UpdateTaskRequest(BaseModel):
    """Partial task update. Omitted fields keep their current value."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(None, ge=0, le=3)
    epic_key: Optional[str] = None
    body: Optional[str] = None
    depends_on: Optional[List[str]] = None

    @field_validator("depends_on")
    @classmethod
    def validate_depends_on(cls, v):
        """Validate dependency keys are non-empty strings."""
        if v is not None:
            for key in v:
                if not isinstance(key, str) or not key.strip():
                    raise ValueError("All dependency keys must be non-empty strings")
        return v


class ReorderTaskRequest(BaseModel):
    position: float

    @field_validator("position")
    @classmethod
    def validate_position(cls, v):
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("position must be a finite number")
        return v


class CreateDocumentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    body: str = ""


class UpdateDocumentRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    body: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    database_connected: bool
    timestamp: str


def create_error_response(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create a standardized error response dictionary."""
    return {"success": False, "error": message, "code": code, "details": details}
