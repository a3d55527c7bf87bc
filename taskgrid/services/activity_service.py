"""Activity service — read side of the events log.

Feeds, entity timelines, ad-hoc event queries, metrics, summaries, security
and audit views. Every query is scoped to the caller: events in workspaces
they belong to, plus their own events that have no workspace (sign-ins,
global searches). Archived (is_deleted) events are excluded everywhere.

Nothing here writes to the database.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone

from flask import current_app
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import and_, or_

from taskgrid.models.activity import EventCategoryStats, UserActivitySummary
from taskgrid.models.event import Event
from taskgrid.services import rollup_service
from taskgrid.services.rollup_service import naive_utc

logger = logging.getLogger(__name__)

DEFAULT_FEED_CATEGORIES = ("user_action", "system")
SECURITY_SEVERITIES = ("warning", "error", "critical")
STATUS_EVENT_TYPES = ("status_changed", "completed", "reopened")
ASSIGNMENT_EVENT_TYPES = ("assigned", "unassigned", "reassigned")

FEED_TEMPLATES = {
    "created": "{user} created {entity}",
    "updated": "{user} updated {entity}",
    "deleted": "{user} deleted {entity}",
    "completed": "{user} completed {entity}",
    "reopened": "{user} reopened {entity}",
    "status_changed": "{user} changed the status of {entity}",
    "assigned": "{user} was assigned to {entity}",
    "unassigned": "{user} was unassigned from {entity}",
    "reassigned": "{entity} was reassigned",
    "moved": "{user} moved {entity}",
    "archived": "{user} archived {entity}",
    "unarchived": "{user} restored {entity}",
    "member_added": "{user} joined {workspace}",
    "member_removed": "{user} left {workspace}",
    "search_performed": '{user} searched for "{query}"',
    "login": "{user} signed in",
    "logout": "{user} signed out",
}
FALLBACK_TEMPLATE = "{user} {action} {entity}"

_NAME_KEYS = ("title", "name")


class ActivityFeedItem(BaseModel):
    id: str
    event_type: str
    entity_type: str
    entity_id: str | None = None
    entity_name: str
    description: str
    user_id: str | None = None
    user_name: str | None = None
    workspace_id: str | None = None
    workspace_name: str | None = None
    category: str
    severity: str
    context: dict = Field(default_factory=dict)
    created_at: datetime


class TimelineItem(BaseModel):
    id: str
    event_type: str
    user_id: str | None = None
    user_name: str | None = None
    old_values: dict | None = None
    new_values: dict | None = None
    delta: dict | None = None
    context: dict = Field(default_factory=dict)
    correlation_id: str | None = None
    is_related: bool = False
    created_at: datetime


class EventFilters(BaseModel):
    """Filters for get_events(). None or [] means "any"."""

    workspace_id: str | None = None
    user_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    event_types: list[str] | None = None
    categories: list[str] | None = None
    severities: list[str] | None = None
    sources: list[str] | None = None
    correlation_id: str | None = None
    tags: list[str] | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None
    offset: int = 0

    @field_validator("event_types", "categories", "severities", "sources", "tags")
    @classmethod
    def _empty_means_unset(cls, value):
        return value or None


class ActivityMetrics(BaseModel):
    total_events: int
    events_by_category: dict[str, int]
    events_by_entity_type: dict[str, int]
    events_by_day: dict[str, int]
    daily_average: float
    most_active_day: str | None = None


# ─── Helpers ────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _scoped(ctx, workspace_id=None):
    """Base query of live events visible to ctx, or None for an empty scope."""
    q = Event.query.filter(Event.is_deleted.is_(False))
    if workspace_id is not None:
        if not ctx.can_read(workspace_id):
            return None
        return q.filter(Event.workspace_id == workspace_id)

    clauses = []
    if ctx.workspace_ids:
        clauses.append(Event.workspace_id.in_(sorted(ctx.workspace_ids)))
    if ctx.user_id is not None:
        clauses.append(and_(Event.workspace_id.is_(None), Event.user_id == ctx.user_id))
    if not clauses:
        return None
    return q.filter(or_(*clauses))


def _clamp(limit, default):
    maximum = current_app.config["ACTIVITY_MAX_LIMIT"]
    if limit is None:
        limit = default
    return max(1, min(int(limit), maximum))


def _newest_first(q):
    return q.order_by(Event.created_at.desc(), Event.id.desc())


def entity_display_name(event):
    """Best human name for an event's entity, from its value snapshots."""
    for values in (event.new_values, event.old_values):
        for key in _NAME_KEYS:
            if values and values.get(key):
                return str(values[key])
    if event.entity_type == "workspace" and event.workspace is not None:
        return event.workspace.name
    return event.entity_type.replace("_", " ")


def describe_event(event, entity_name=None):
    """Render the feed sentence for an event.

    Unknown event types fall back to "<user> <event type words> <entity>".
    """
    template = FEED_TEMPLATES.get(event.event_type, FALLBACK_TEMPLATE)
    values = {
        "user": event.user.name if event.user else "System",
        "entity": entity_name or entity_display_name(event),
        "workspace": event.workspace.name if event.workspace else "a workspace",
        "action": event.event_type.replace("_", " "),
        "query": (event.context or {}).get("query", ""),
    }
    return template.format_map(values)


def _feed_item(event):
    name = entity_display_name(event)
    return ActivityFeedItem(
        id=event.id,
        event_type=event.event_type,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        entity_name=name,
        description=describe_event(event, name),
        user_id=event.user_id,
        user_name=event.user.name if event.user else None,
        workspace_id=event.workspace_id,
        workspace_name=event.workspace.name if event.workspace else None,
        category=event.category,
        severity=event.severity,
        context=event.context or {},
        created_at=event.created_at,
    )


# ─── Feeds and timelines ────────────────────────────────────────


def get_recent_activity(
    ctx,
    workspace_id=None,
    user_id=None,
    categories=DEFAULT_FEED_CATEGORIES,
    limit=50,
    offset=0,
):
    """Newest-first activity feed with rendered descriptions.

    categories=None includes every category.
    """
    q = _scoped(ctx, workspace_id)
    if q is None:
        return []
    if user_id is not None:
        q = q.filter(Event.user_id == user_id)
    if categories:
        q = q.filter(Event.category.in_(list(categories)))
    events = (
        _newest_first(q)
        .offset(max(0, int(offset or 0)))
        .limit(_clamp(limit, 50))
        .all()
    )
    return [_feed_item(e) for e in events]


def get_entity_activity_timeline(ctx, entity_type, entity_id, limit=100):
    """Events about an entity, directly or as the related entity, newest
    first. is_related marks the indirect ones."""
    q = _scoped(ctx)
    if q is None:
        return []
    q = q.filter(or_(
        and_(Event.entity_type == entity_type, Event.entity_id == entity_id),
        and_(
            Event.related_entity_type == entity_type,
            Event.related_entity_id == entity_id,
        ),
    ))
    events = _newest_first(q).limit(_clamp(limit, 100)).all()
    return [
        TimelineItem(
            id=e.id,
            event_type=e.event_type,
            user_id=e.user_id,
            user_name=e.user.name if e.user else None,
            old_values=e.old_values,
            new_values=e.new_values,
            delta=e.delta,
            context=e.context or {},
            correlation_id=e.correlation_id,
            is_related=not (e.entity_type == entity_type and e.entity_id == entity_id),
            created_at=e.created_at,
        )
        for e in events
    ]


def get_events(ctx, filters=None):
    """Ad-hoc event query. Returns Event.to_dict() rows, newest first,
    capped at EVENT_QUERY_MAX_ROWS."""
    if filters is None:
        filters = EventFilters()
    elif isinstance(filters, dict):
        filters = EventFilters(**filters)

    q = _scoped(ctx, filters.workspace_id)
    if q is None:
        return []
    if filters.user_id:
        q = q.filter(Event.user_id == filters.user_id)
    if filters.entity_type:
        q = q.filter(Event.entity_type == filters.entity_type)
    if filters.entity_id:
        q = q.filter(Event.entity_id == filters.entity_id)
    if filters.event_types:
        q = q.filter(Event.event_type.in_(filters.event_types))
    if filters.categories:
        q = q.filter(Event.category.in_(filters.categories))
    if filters.severities:
        q = q.filter(Event.severity.in_(filters.severities))
    if filters.sources:
        q = q.filter(Event.source.in_(filters.sources))
    if filters.correlation_id:
        q = q.filter(Event.correlation_id == filters.correlation_id)
    if filters.start:
        q = q.filter(Event.created_at >= naive_utc(filters.start))
    if filters.end:
        q = q.filter(Event.created_at <= naive_utc(filters.end))

    max_rows = current_app.config["EVENT_QUERY_MAX_ROWS"]
    limit = max_rows if filters.limit is None else max(1, min(filters.limit, max_rows))
    offset = max(0, filters.offset)

    q = _newest_first(q)
    if filters.tags:
        # Tags are a JSON array; overlap is checked on the decoded values
        wanted = set(filters.tags)
        events = [e for e in q.all() if wanted & set(e.tags or [])]
        events = events[offset:offset + limit]
    else:
        events = q.offset(offset).limit(limit).all()
    return [e.to_dict() for e in events]


def get_audit_trail(ctx, entity_type=None, entity_id=None, user_id=None, start=None, end=None, limit=500):
    return get_events(ctx, EventFilters(
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        start=start,
        end=end,
        limit=limit,
    ))


def get_security_events(ctx, workspace_id=None, user_id=None, severities=SECURITY_SEVERITIES, days=30, limit=100, now=None):
    """Security-category events at the given severities within `days`."""
    q = _scoped(ctx, workspace_id)
    if q is None:
        return []
    since = naive_utc(now or _now()) - timedelta(days=max(1, int(days)))
    q = q.filter(Event.category == "security", Event.created_at >= since)
    if severities:
        q = q.filter(Event.severity.in_(list(severities)))
    if user_id is not None:
        q = q.filter(Event.user_id == user_id)
    return [e.to_dict() for e in _newest_first(q).limit(_clamp(limit, 100)).all()]


# ─── Metrics ────────────────────────────────────────────────────


def get_activity_metrics(ctx, workspace_id=None, user_id=None, days=7, now=None):
    """Counts by category, entity type and day over the last `days` days.

    daily_average is total / days. most_active_day is the ISO date with the
    most events (earliest on ties), or None with no events.
    """
    days = max(1, int(days))
    q = _scoped(ctx, workspace_id)
    if q is None:
        return ActivityMetrics(
            total_events=0, events_by_category={}, events_by_entity_type={},
            events_by_day={}, daily_average=0.0, most_active_day=None,
        )

    since = naive_utc(now or _now()) - timedelta(days=days)
    q = q.filter(Event.created_at >= since)
    if user_id is not None:
        q = q.filter(Event.user_id == user_id)
    rows = q.with_entities(Event.created_at, Event.category, Event.entity_type).all()

    by_category = Counter(r.category for r in rows)
    by_entity = Counter(r.entity_type for r in rows)
    by_day = Counter(naive_utc(r.created_at).date().isoformat() for r in rows)

    most_active_day = None
    if by_day:
        top = max(by_day.values())
        most_active_day = min(d for d, n in by_day.items() if n == top)

    return ActivityMetrics(
        total_events=len(rows),
        events_by_category=dict(by_category),
        events_by_entity_type=dict(by_entity),
        events_by_day=dict(sorted(by_day.items())),
        daily_average=round(len(rows) / days, 2),
        most_active_day=most_active_day,
    )


def get_task_activity_summary(ctx, task_id):
    """Counts of a task's events by type, status changes, assignments,
    contributors and first/last activity. None if the task has no events."""
    q = _scoped(ctx)
    if q is None:
        return None
    events = (
        q.filter(Event.entity_type == "task", Event.entity_id == task_id)
        .order_by(Event.created_at.asc())
        .all()
    )
    if not events:
        return None
    by_type = Counter(e.event_type for e in events)
    return {
        "task_id": task_id,
        "total_events": len(events),
        "events_by_type": dict(by_type),
        "status_changes": sum(by_type[t] for t in STATUS_EVENT_TYPES),
        "assignments": sum(by_type[t] for t in ASSIGNMENT_EVENT_TYPES),
        "contributors": len({e.user_id for e in events if e.user_id}),
        "first_activity_at": events[0].created_at.isoformat(),
        "last_activity_at": events[-1].created_at.isoformat(),
    }


# ─── Rollup reads ───────────────────────────────────────────────


def get_user_activity_summary(ctx, user_id=None, workspace_id=None, period_type="day", start=None, end=None):
    """UserActivitySummary rows for a user, oldest first.

    Stored rows are returned as-is. When start is given, every period in
    [start, end) with no stored row is computed from raw events instead,
    without persisting. With no end, only the period containing start.
    """
    user_id = user_id or ctx.user_id
    if workspace_id is not None and not ctx.can_read(workspace_id):
        return []

    q = UserActivitySummary.query.filter(
        UserActivitySummary.user_id == user_id,
        UserActivitySummary.period_type == period_type,
    )
    if workspace_id is not None:
        q = q.filter(UserActivitySummary.workspace_id == workspace_id)
    else:
        visible = [UserActivitySummary.workspace_id.in_(sorted(ctx.workspace_ids))]
        if user_id == ctx.user_id:
            visible.append(UserActivitySummary.workspace_id.is_(None))
        q = q.filter(or_(*visible))
    if start is not None:
        start = naive_utc(start)
        first_period = rollup_service.period_bounds(period_type, start)[0]
        q = q.filter(UserActivitySummary.period_start >= first_period)
    if end is not None:
        q = q.filter(UserActivitySummary.period_start < naive_utc(end))

    rows = q.order_by(UserActivitySummary.period_start.asc()).all()
    if start is None:
        return [r.to_dict() for r in rows]

    stored = {naive_utc(r.period_start) for r in rows}
    for period_start in rollup_service.iter_period_starts(period_type, start, end):
        if period_start in stored:
            continue
        rows.extend(
            r for r in rollup_service.compute_user_activity(
                period_type, period_start, workspace_id=workspace_id, user_id=user_id
            )
            if ctx.can_read(r.workspace_id) or (r.workspace_id is None and user_id == ctx.user_id)
        )
    rows.sort(key=lambda r: naive_utc(r.period_start))
    return [r.to_dict() for r in rows]


def get_workspace_activity_stats(ctx, workspace_id, period_type="day", start=None, end=None):
    """EventCategoryStats rows for a workspace, oldest period first.

    Periods in [start, end) with no stored rows are computed from raw events
    without persisting. With no end, only the period containing start.
    """
    if not ctx.can_read(workspace_id):
        return []
    q = EventCategoryStats.query.filter(
        EventCategoryStats.workspace_id == workspace_id,
        EventCategoryStats.period_type == period_type,
    )
    if start is not None:
        periods = rollup_service.iter_period_starts(period_type, start, end)
        if not periods:
            return []
        q = q.filter(
            EventCategoryStats.period_start >= periods[0],
            EventCategoryStats.period_start <= periods[-1],
        )
    rows = q.all()

    if start is not None:
        stored = {naive_utc(r.period_start) for r in rows}
        for period_start in periods:
            if period_start not in stored:
                rows.extend(rollup_service.compute_event_category_stats(
                    period_type, period_start, workspace_id=workspace_id
                ))
    rows.sort(key=lambda r: (naive_utc(r.period_start), r.category, r.event_type, r.entity_type or ""))
    return [r.to_dict() for r in rows]
