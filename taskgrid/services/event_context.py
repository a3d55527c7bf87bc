"""Typed context payloads for events.

The events.context column is free-form JSON, but the well-known event kinds
carry a known shape. Each shape is a pydantic model; unknown keys are kept
(extra="allow") so callers can attach anything else they need.
"""

from pydantic import BaseModel, ConfigDict, Field


class EventContext(BaseModel):
    """Base payload: arbitrary keys, nothing required."""

    model_config = ConfigDict(extra="allow")


class TaskChangeContext(EventContext):
    previous_status: str | None = None
    new_status: str | None = None
    previous_assignee: str | None = None
    new_assignee: str | None = None
    previous_section: str | None = None
    new_section: str | None = None
    automation_triggered: bool = False


class AuthContext(EventContext):
    ip_address: str | None = None
    user_agent: str | None = None
    method: str | None = None
    reason: str | None = None


class SearchContext(EventContext):
    query: str
    type: str = "general"
    filters: dict = Field(default_factory=dict)
    results_count: int = 0
    execution_time_ms: float | None = None


class ErrorContext(EventContext):
    error_code: str
    error_message: str
    stack_trace: str | None = None


class BatchContext(EventContext):
    operation_type: str
    entity_count: int
    entity_ids: list[str] = Field(default_factory=list)


class MembershipContext(EventContext):
    role: str | None = None
    invited_by: str | None = None


_BY_EVENT_TYPE = {
    "status_changed": TaskChangeContext,
    "completed": TaskChangeContext,
    "reopened": TaskChangeContext,
    "reassigned": TaskChangeContext,
    "assigned": TaskChangeContext,
    "unassigned": TaskChangeContext,
    "moved": TaskChangeContext,
    "login": AuthContext,
    "logout": AuthContext,
    "login_failed": AuthContext,
    "password_changed": AuthContext,
    "suspicious_activity": AuthContext,
    "search_performed": SearchContext,
    "member_added": MembershipContext,
    "member_removed": MembershipContext,
    "role_changed": MembershipContext,
}


def context_model_for(event_type, category=None):
    if category == "error":
        return ErrorContext
    return _BY_EVENT_TYPE.get(event_type, EventContext)


def build_context(event_type, category=None, data=None):
    """Validate a raw dict (or pass through a model) into the right variant.

    Raises pydantic.ValidationError (a ValueError) if a required field of
    the variant is missing.
    """
    if isinstance(data, EventContext):
        return data
    model = context_model_for(event_type, category)
    return model.model_validate(data or {})


def dump_context(context):
    return context.model_dump(mode="json")
