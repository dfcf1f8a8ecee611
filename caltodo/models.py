"""
Pydantic models for caltodo.

Defines the core data structures for projects, tasks and documents with field
validation, plus the partition key that scopes task ordering.
"""

from dataclasses import dataclass
from datetime import date as Date, datetime
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from caltodo.exceptions import ValidationError
from caltodo.utils.clock import format_timestamp, utc_now

ModelT = TypeVar("ModelT", bound=BaseModel)


def _sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip NUL bytes and surrounding whitespace from user supplied text."""
    if value is None:
        return None
    return value.replace("\0", "").strip()


@dataclass(frozen=True)
class PartitionKey:
    """
    The ordering scope of a task: ``(user_id, date, project_id)``.

    Two tasks share a partition only if all three parts are equal, with
    ``None == None`` for the date and project.
    """

    user_id: int
    date: Optional[Date] = None
    project_id: Optional[int] = None

    @classmethod
    def of(cls, task: Any) -> "PartitionKey":
        """Build the partition key of a task (ORM row or pydantic model)."""
        return cls(user_id=task.user_id, date=task.date, project_id=task.project_id)


class Project(BaseModel):
    """
    Represents a project owning zero or more tasks.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = Field(default=None, description="Database identifier")
    user_id: int = Field(..., ge=1, description="Owner")
    name: str = Field(..., min_length=1, max_length=256, description="Project name")
    description: Optional[str] = Field(default=None, max_length=2048)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("name", "description", mode="before")
    @classmethod
    def sanitize(cls, v: Optional[str]) -> Optional[str]:
        return _sanitize_text(v)

    def to_response(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }


class Task(BaseModel):
    """
    Represents a single task placed on a date and/or in a project.

    ``order_index`` is the 1-based position of the task within its partition
    ``(user_id, date, project_id)``.
    """

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 7,
                "user_id": 1,
                "title": "Write release notes",
                "description": "Summarize the ordering fixes",
                "date": "2025-09-28",
                "project_id": None,
                "parent_id": None,
                "order_index": 1,
                "completed": False,
                "created_at": "2025-09-28T10:00:00",
                "updated_at": "2025-09-28T10:00:00",
            }
        },
    )

    id: Optional[int] = Field(default=None, description="Database identifier")
    user_id: int = Field(..., ge=1, description="Owner")
    title: str = Field(..., min_length=1, max_length=256, description="Task title")
    description: Optional[str] = Field(default=None, max_length=50000)
    date: Optional[Date] = Field(default=None, description="Calendar date, None for undated project tasks")
    project_id: Optional[int] = Field(default=None, description="Owning project")
    parent_id: Optional[int] = Field(default=None, description="Parent task for subtasks")
    order_index: int = Field(default=1, ge=1, description="Position within the partition")
    completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("title", "description", mode="before")
    @classmethod
    def sanitize(cls, v: Optional[str]) -> Optional[str]:
        return _sanitize_text(v)

    @property
    def partition(self) -> PartitionKey:
        return PartitionKey.of(self)

    def to_response(self) -> Dict[str, Any]:
        """
        Format the task as the API payload.

        Returns:
            camelCase dictionary with the date as YYYY-MM-DD and the
            position exposed as ``order``
        """
        return {
            "id": self.id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "parentId": self.parent_id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat() if self.date else None,
            "order": self.order_index,
            "completed": self.completed,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }


class Document(BaseModel):
    """
    Represents a document in a user's document tree.

    Documents carry no ordering; lists are sorted by creation time.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = Field(default=None, description="Database identifier")
    user_id: int = Field(..., ge=1, description="Owner")
    parent_id: Optional[int] = Field(default=None, description="Parent document")
    title: str = Field(..., min_length=1, max_length=256, description="Document title")
    content: Optional[str] = Field(default=None, description="Document body, unbounded")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("title", mode="before")
    @classmethod
    def sanitize_title(cls, v: Optional[str]) -> Optional[str]:
        return _sanitize_text(v)

    def to_response(self, include_content: bool = True) -> Dict[str, Any]:
        """
        Format the document as the API payload.

        Args:
            include_content: False for list views, which omit the body
        """
        payload = {
            "id": self.id,
            "userId": self.user_id,
            "parentId": self.parent_id,
            "title": self.title,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if include_content:
            payload["content"] = self.content
        return payload


def validate_fields(model: Type[ModelT], values: Dict[str, Any]) -> ModelT:
    """
    Validate raw values against a model, reporting the first bad field.

    Raises:
        ValidationError: With ``field`` set to the offending field name
    """
    try:
        return model.model_validate(values)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(f"Invalid {field}: {first.get('msg')}", field=field) from e
