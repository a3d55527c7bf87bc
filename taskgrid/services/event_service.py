"""Event service — the single write path into the append-only events log.

log_event() never raises into the caller's business operation: each insert
runs inside a SAVEPOINT, and on failure the savepoint is rolled back, the
error is logged, and None is returned. The caller's own transaction stays
usable.

Functions flush but do NOT commit — the caller commits.
"""

import logging
import traceback

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError

from taskgrid.context import generate_correlation_id  # noqa: F401
from taskgrid.extensions import db
from taskgrid.models.event import Event
from taskgrid.models.task import Task
from taskgrid.services.event_context import (
    AuthContext,
    BatchContext,
    ErrorContext,
    MembershipContext,
    SearchContext,
    TaskChangeContext,
    build_context,
    dump_context,
)

logger = logging.getLogger(__name__)

AUTH_EVENT_TYPES = {
    "login": "info",
    "logout": "info",
    "login_failed": "warning",
    "password_changed": "info",
    "mfa_enabled": "info",
    "mfa_disabled": "warning",
    "suspicious_activity": "critical",
}


def _jsonable(value):
    if value is None:
        return None
    return to_jsonable_python(value, fallback=str)


def compute_delta(old_values, new_values):
    """Keys of new_values whose value differs from (or is absent in) old_values."""
    if new_values is None:
        return None
    old_values = old_values or {}
    return {
        key: value
        for key, value in new_values.items()
        if key not in old_values or old_values[key] != value
    }


def _check_choice(name, value, allowed):
    if value not in allowed:
        raise ValueError(
            f"Invalid {name} '{value}'. Must be one of: {', '.join(allowed)}"
        )


def _insert_event(event):
    """Add one event inside a SAVEPOINT so a failure can't poison the
    surrounding transaction."""
    with db.session.begin_nested():
        db.session.add(event)


def _write(event):
    try:
        _insert_event(event)
    except SQLAlchemyError:
        logger.exception(
            "Failed to write %s.%s event", event.entity_type, event.event_type
        )
        return None
    return event.id


def log_event(
    ctx,
    entity_type,
    *,
    workspace_id=None,
    user_id=None,
    event_type="updated",
    entity_id=None,
    old_values=None,
    new_values=None,
    category="user_action",
    severity="info",
    source=None,
    correlation_id=None,
    related_entity_type=None,
    related_entity_id=None,
    context=None,
    tags=None,
):
    """Write one event. Returns the new event id, or None if logging failed.

    Args:
        ctx: RequestContext; supplies user, source, IP, user agent, session
            and correlation id unless overridden.
        entity_type: One of Event.ENTITY_TYPES.
        old_values / new_values: Snapshots; the delta is computed from them.
        context: dict or EventContext, validated against the variant for
            event_type / category.
        tags: Free-form labels for filtering.
    """
    try:
        _check_choice("entity type", entity_type, Event.ENTITY_TYPES)
        _check_choice("event type", event_type, Event.EVENT_TYPES)
        _check_choice("category", category, Event.CATEGORIES)
        _check_choice("severity", severity, Event.SEVERITIES)
        source = source or ctx.source
        _check_choice("source", source, Event.SOURCES)

        old_values = _jsonable(old_values)
        new_values = _jsonable(new_values)
        payload = build_context(event_type, category, context)
    except ValueError:
        logger.exception("Rejected %s.%s event", entity_type, event_type)
        return None

    event = Event(
        workspace_id=workspace_id,
        user_id=user_id or ctx.user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        delta=compute_delta(old_values, new_values),
        category=category,
        severity=severity,
        source=source,
        correlation_id=correlation_id or ctx.correlation_id,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        context=dump_context(payload),
        tags=list(tags or []),
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        session_id=ctx.session_id,
    )
    return _write(event)


# ─── Task events ────────────────────────────────────────────────


def derive_task_event(old_values, new_values):
    """Pick the event type for a task update and build its context.

    Precedence: status change (completed when the new status is completed),
    then assignee change, then section move, else a plain update. The
    context always carries the previous and new status, assignee and
    section, whichever of them changed. Pure.

    Returns:
        (event_type, TaskChangeContext)
    """
    old_values = old_values or {}
    new_values = new_values or {}

    context = TaskChangeContext(
        previous_status=old_values.get("status"),
        new_status=new_values.get("status"),
        previous_assignee=old_values.get("assigned_to_user_id"),
        new_assignee=new_values.get("assigned_to_user_id"),
        previous_section=old_values.get("section_id"),
        new_section=new_values.get("section_id"),
        automation_triggered=False,
    )

    if context.previous_status != context.new_status:
        if context.new_status == Task.COMPLETED:
            return "completed", context
        return "status_changed", context
    if context.previous_assignee != context.new_assignee:
        return "reassigned", context
    if context.previous_section != context.new_section:
        return "moved", context
    return "updated", context


def log_task_created(ctx, task, correlation_id=None):
    return log_event(
        ctx,
        "task",
        workspace_id=task.workspace_id,
        event_type="created",
        entity_id=task.id,
        new_values=task.to_dict(),
        related_entity_type="section",
        related_entity_id=task.section_id,
        correlation_id=correlation_id,
        context={"section_id": task.section_id},
        tags=["task", "create", task.status],
    )


def log_task_updated(ctx, task_id, workspace_id, old_values, new_values, correlation_id=None):
    event_type, context = derive_task_event(old_values, new_values)
    return log_event(
        ctx,
        "task",
        workspace_id=workspace_id,
        event_type=event_type,
        entity_id=task_id,
        old_values=old_values,
        new_values=new_values,
        related_entity_type="section",
        related_entity_id=(new_values or {}).get("section_id"),
        correlation_id=correlation_id,
        context=context,
        tags=["task", "update", event_type],
    )


def log_task_deleted(ctx, task_snapshot, correlation_id=None):
    return log_event(
        ctx,
        "task",
        workspace_id=task_snapshot.get("workspace_id"),
        event_type="deleted",
        entity_id=task_snapshot.get("id"),
        old_values=task_snapshot,
        related_entity_type="section",
        related_entity_id=task_snapshot.get("section_id"),
        correlation_id=correlation_id,
        tags=["task", "delete"],
    )


# ─── Workspace / section / membership events ───────────────────


def log_workspace_created(ctx, workspace, correlation_id=None):
    return log_event(
        ctx,
        "workspace",
        workspace_id=workspace.id,
        event_type="created",
        entity_id=workspace.id,
        new_values=workspace.to_dict(),
        correlation_id=correlation_id,
        tags=["workspace", "create"],
    )


def log_section_created(ctx, section, correlation_id=None):
    return log_event(
        ctx,
        "section",
        workspace_id=section.workspace_id,
        event_type="created",
        entity_id=section.id,
        new_values=section.to_dict(),
        related_entity_type="workspace",
        related_entity_id=section.workspace_id,
        correlation_id=correlation_id,
        tags=["section", "create"],
    )


def log_section_archived(ctx, section, archived=True, correlation_id=None):
    event_type = "archived" if archived else "unarchived"
    return log_event(
        ctx,
        "section",
        workspace_id=section.workspace_id,
        event_type=event_type,
        entity_id=section.id,
        old_values={"is_archived": not archived},
        new_values={"is_archived": archived},
        related_entity_type="workspace",
        related_entity_id=section.workspace_id,
        correlation_id=correlation_id,
        tags=["section", event_type],
    )


def log_member_added(ctx, member, invited_by=None, correlation_id=None):
    return log_event(
        ctx,
        "workspace_member",
        workspace_id=member.workspace_id,
        event_type="member_added",
        entity_id=member.id,
        new_values={"user_id": member.user_id, "role": member.role},
        related_entity_type="user",
        related_entity_id=member.user_id,
        correlation_id=correlation_id,
        context=MembershipContext(role=member.role, invited_by=invited_by),
        tags=["member", "add", member.role],
    )


# ─── Auth, search, error, batch, view ───────────────────────────


def log_auth_event(ctx, event_type, user_id=None, method=None, reason=None, correlation_id=None):
    """Log a security event for a sign-in / sign-out style action.

    Only the event types in AUTH_EVENT_TYPES are accepted; severity follows
    from the type (failed logins warn, suspicious activity is critical).
    """
    if event_type not in AUTH_EVENT_TYPES:
        logger.error("Rejected unknown auth event type %r", event_type)
        return None

    context = AuthContext(
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        method=method,
        reason=reason,
    )
    event = Event(
        user_id=user_id or ctx.user_id,
        event_type=event_type,
        entity_type="session",
        entity_id=ctx.session_id,
        category="security",
        severity=AUTH_EVENT_TYPES[event_type],
        source=ctx.source,
        correlation_id=correlation_id or ctx.correlation_id,
        context=dump_context(context),
        tags=["auth", event_type],
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        session_id=ctx.session_id,
    )
    return _write(event)


def log_search_event(
    ctx,
    query,
    search_type="general",
    filters=None,
    results_count=0,
    execution_time_ms=None,
    workspace_id=None,
    correlation_id=None,
):
    return log_event(
        ctx,
        "workspace",
        workspace_id=workspace_id,
        event_type="search_performed",
        entity_id=workspace_id,
        category="user_action",
        severity="debug",
        correlation_id=correlation_id,
        context=SearchContext(
            query=query or "",
            type=search_type,
            filters=_jsonable(filters) or {},
            results_count=results_count,
            execution_time_ms=execution_time_ms,
        ),
        tags=["search", search_type],
    )


def log_error(
    ctx,
    error_code,
    error_message,
    stack_trace=None,
    workspace_id=None,
    entity_type="user",
    entity_id=None,
    severity="error",
    correlation_id=None,
):
    return log_event(
        ctx,
        entity_type,
        workspace_id=workspace_id,
        event_type="updated",
        entity_id=entity_id,
        category="error",
        severity=severity,
        correlation_id=correlation_id,
        context=ErrorContext(
            error_code=error_code,
            error_message=error_message,
            stack_trace=stack_trace,
        ),
        tags=["error", error_code],
    )


def log_exception(ctx, exc, error_code="unhandled_exception", workspace_id=None):
    """log_error() for a caught exception, with its formatted traceback."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return log_error(
        ctx,
        error_code,
        str(exc) or type(exc).__name__,
        stack_trace=stack,
        workspace_id=workspace_id,
    )


def log_batch_operation(
    ctx,
    operation_type,
    entity_type,
    entity_ids,
    workspace_id=None,
    correlation_id=None,
):
    """One summary event for an operation applied to many entities."""
    entity_ids = list(entity_ids)
    return log_event(
        ctx,
        entity_type,
        workspace_id=workspace_id,
        event_type="updated",
        category="user_action",
        correlation_id=correlation_id,
        context=BatchContext(
            operation_type=operation_type,
            entity_count=len(entity_ids),
            entity_ids=entity_ids,
        ),
        tags=["batch", operation_type],
    )


def log_entity_viewed(ctx, entity_type, entity_id, workspace_id=None, correlation_id=None):
    return log_event(
        ctx,
        entity_type,
        workspace_id=workspace_id,
        event_type="viewed",
        entity_id=entity_id,
        severity="debug",
        correlation_id=correlation_id,
        tags=["view", entity_type],
    )
