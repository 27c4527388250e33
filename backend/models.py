from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

MIN_IMPORTANCE = 0
MAX_IMPORTANCE = 50
MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 9
MAX_POINTS = 500


def compute_points(importance: int, complexity: int) -> int:
    """
    Score a task from its importance and complexity.
    points = round(10 * importance / complexity), half-up, clamped to [0, 500].
    """
    if importance <= 0:
        return 0
    points = int(10 * importance / complexity + 0.5)
    return max(0, min(MAX_POINTS, points))


class Tag(BaseModel):
    id: str
    name: str
    color: Optional[str] = None
    owner_id: str


class Task(BaseModel):
    id: str
    name: str
    link: Optional[str] = None
    note: Optional[str] = None
    importance: int = Field(ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    complexity: int = Field(ge=MIN_COMPLEXITY, le=MAX_COMPLEXITY)
    planned_date: Optional[date] = None
    due_date: Optional[date] = None
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None  # Filled by joins, used for export
    position: Optional[int] = Field(default=None, ge=1)  # Manual subtask order
    completed: bool = False
    completed_at: Optional[str] = None
    created_at: str  # ISO format datetime string
    updated_at: str
    owner_id: str
    tags: list[Tag] = []
    subtasks: list[Task] = []

    @computed_field
    @property
    def points(self) -> int:
        return compute_points(self.importance, self.complexity)

    @property
    def has_dates(self) -> bool:
        return self.planned_date is not None or self.due_date is not None


class TaskCreate(BaseModel):
    name: str = Field(min_length=1)
    link: Optional[str] = None
    note: Optional[str] = None
    # New tasks default to maximum priority until the user weighs them
    importance: int = Field(default=MAX_IMPORTANCE, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    complexity: int = Field(default=MIN_COMPLEXITY, ge=MIN_COMPLEXITY, le=MAX_COMPLEXITY)
    planned_date: Optional[date] = None
    due_date: Optional[date] = None
    parent_id: Optional[str] = None
    position: Optional[int] = Field(default=None, ge=1)
    tag_ids: list[str] = []


class TaskUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    link: Optional[str] = None
    note: Optional[str] = None
    importance: Optional[int] = Field(default=None, ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    complexity: Optional[int] = Field(default=None, ge=MIN_COMPLEXITY, le=MAX_COMPLEXITY)
    planned_date: Optional[date] = None
    due_date: Optional[date] = None
    parent_id: Optional[str] = None
    position: Optional[int] = Field(default=None, ge=1)
    completed: Optional[bool] = None
    tag_ids: Optional[list[str]] = None

    # These may be left out of a PATCH but never cleared
    @field_validator("name", "importance", "complexity", "completed", "tag_ids")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("cannot be null")
        return value


class TagCreate(BaseModel):
    name: str = Field(min_length=1)
    color: Optional[str] = None


class TagUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None


class DraftRecord(BaseModel):
    """A validated CSV row waiting to be materialized into a Task."""
    line_number: int
    name: str
    link: Optional[str] = None
    note: Optional[str] = None
    importance: int = Field(ge=MIN_IMPORTANCE, le=MAX_IMPORTANCE)
    complexity: int = Field(ge=MIN_COMPLEXITY, le=MAX_COMPLEXITY)
    supplied_points: Optional[int] = None  # As read from the file, never trusted
    planned_date: Optional[date] = None
    due_date: Optional[date] = None
    parent_name: Optional[str] = None
    tag_names: list[str] = []
    tag_colors: list[Optional[str]] = []  # Same length as tag_names

    @property
    def points(self) -> int:
        return compute_points(self.importance, self.complexity)


class ImportRequest(BaseModel):
    csv_content: str


class ImportResult(BaseModel):
    imported_count: int = 0
    errors: list[str] = []
