"""Pydantic schemas for search results, suggestions and stats."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

EntityType = Literal["workspace", "section", "task"]
SuggestionType = Literal["workspace", "section", "task", "tag"]


class SearchResult(BaseModel):
    """One hit from the cross-entity search.

    Attributes:
        entity_type: workspace, section or task.
        entity_id: Primary key of the matched entity.
        title: Workspace/section name or task title.
        description: Full description text, if any.
        workspace_id / workspace_name: Owning workspace.
        section_id / section_name: Owning section (tasks only).
        relevance_score: Higher is better; always > 0 for a hit.
        context_snippet: Escaped excerpt with <b> highlight tags.
        entity_data: The matched row's to_dict() payload.
    """

    entity_type: EntityType
    entity_id: str
    title: str
    description: str | None = None
    workspace_id: str
    workspace_name: str
    section_id: str | None = None
    section_name: str | None = None
    relevance_score: float
    context_snippet: str = Field(default="", description="Excerpt with <b> highlight tags")
    entity_data: dict = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TaskSearchResult(BaseModel):
    """A task hit from the filtered task search."""

    id: str
    title: str
    description: str | None = None
    status: str
    priority: str
    assigned_to_user_id: str | None = None
    assignee_name: str | None = None
    created_by_user_id: str
    creator_name: str | None = None
    due_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    section_id: str
    section_name: str
    workspace_id: str
    workspace_name: str
    relevance_score: float = 0.0
    context_snippet: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TaskSearchFilters(BaseModel):
    """Structured filters for search_tasks. None or [] means "no filter".

    assignee_ids may contain None to mean "unassigned".
    """

    workspace_id: str | None = None
    section_ids: list[str] | None = None
    statuses: list[str] | None = None
    priorities: list[str] | None = None
    assignee_ids: list[str | None] | None = None
    tags: list[str] | None = None
    due_date_from: date | None = None
    due_date_to: date | None = None

    @field_validator("section_ids", "statuses", "priorities", "assignee_ids", "tags")
    @classmethod
    def _empty_means_unset(cls, value):
        return value or None


class SearchSuggestion(BaseModel):
    suggestion: str
    suggestion_type: SuggestionType
    match_count: int


class EntityIndexStats(BaseModel):
    entity_type: EntityType
    total: int
    indexed: int


class SearchStats(BaseModel):
    """Index coverage across the caller's workspaces."""

    workspace_count: int
    section_count: int
    task_count: int
    total_indexed_entities: int
    search_coverage_percentage: float
    entities: list[EntityIndexStats] = Field(default_factory=list)


class SearchMetric(BaseModel):
    metric_name: str
    metric_value: float
    metric_description: str
