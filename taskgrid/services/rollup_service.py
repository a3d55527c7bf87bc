"""Rollup service — builds the activity summary caches from raw events and
applies retention.

Summaries are always derivable from the events table: compute_* functions
return fresh, unsaved rows and never touch the session; aggregate_*
functions upsert them. Functions flush but do NOT commit — the caller commits.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone

from flask import current_app

from taskgrid.extensions import db
from taskgrid.models.activity import PERIOD_TYPES, EventCategoryStats, UserActivitySummary
from taskgrid.models.event import Event
from taskgrid.models.task import Task

logger = logging.getLogger(__name__)

# Security events at these severities survive retention archiving
CRITICAL_SEVERITIES = ("error", "critical")

# Cap on periods a summary read will compute from raw events
MAX_COMPUTED_PERIODS = 400


def naive_utc(moment):
    """Drop tzinfo after converting to UTC. Timestamps read back from SQLite
    are naive while fresh ones are aware; compare only normalized values."""
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def period_bounds(period_type, moment):
    """[start, end) of the period containing `moment` (naive UTC)."""
    if period_type not in PERIOD_TYPES:
        raise ValueError(
            f"Invalid period type '{period_type}'. Must be one of: {', '.join(PERIOD_TYPES)}"
        )
    moment = naive_utc(moment)

    if period_type == "hour":
        start = moment.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)

    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period_type == "day":
        return day, day + timedelta(days=1)
    if period_type == "week":
        start = day - timedelta(days=day.weekday())
        return start, start + timedelta(days=7)

    start = day.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def iter_period_starts(period_type, start, end=None):
    """Starts of the periods overlapping [start, end), oldest first.

    With no end, only the period containing start. Raises ValueError when
    the range spans more than MAX_COMPUTED_PERIODS periods.
    """
    period_start, period_end = period_bounds(period_type, start)
    if end is None:
        return [period_start]
    end = naive_utc(end)
    starts = []
    while period_start < end:
        if len(starts) == MAX_COMPUTED_PERIODS:
            raise ValueError(
                f"Range spans more than {MAX_COMPUTED_PERIODS} {period_type} periods."
            )
        starts.append(period_start)
        period_start, period_end = period_bounds(period_type, period_end)
    return starts


def _events_between(start, end, workspace_id=None, user_id=None):
    q = Event.query.filter(
        Event.created_at >= start,
        Event.created_at < end,
        Event.is_deleted.is_(False),
    )
    if workspace_id is not None:
        q = q.filter(Event.workspace_id == workspace_id)
    if user_id is not None:
        q = q.filter(Event.user_id == user_id)
    return q.order_by(Event.created_at.asc()).all()


def _is_completion(event):
    return (
        event.entity_type == "task"
        and event.event_type in ("completed", "status_changed")
        and (event.new_values or {}).get("status") == Task.COMPLETED
    )


def _summary_counters(events):
    counters = Counter()
    for e in events:
        if e.entity_type == "task":
            if e.event_type == "created":
                counters["tasks_created"] += 1
            elif _is_completion(e):
                counters["tasks_completed"] += 1
            elif e.event_type in ("updated", "status_changed", "reassigned", "moved"):
                counters["tasks_updated"] += 1
        elif e.entity_type == "section" and e.event_type == "created":
            counters["sections_created"] += 1
        elif e.entity_type == "workspace" and e.event_type == "created":
            counters["workspaces_created"] += 1

        if e.event_type == "search_performed":
            counters["searches_performed"] += 1
        elif e.event_type == "login":
            counters["logins"] += 1
    return counters


def _most_active_hour(events):
    hours = Counter(naive_utc(e.created_at).hour for e in events)
    if not hours:
        return None
    top = max(hours.values())
    return min(h for h, n in hours.items() if n == top)


def compute_user_activity(period_type, period_start, workspace_id=None, user_id=None):
    """Build (unsaved) UserActivitySummary rows for one period from events."""
    start, end = period_bounds(period_type, period_start)
    groups = defaultdict(list)
    for e in _events_between(start, end, workspace_id, user_id):
        if e.user_id is None:
            continue
        groups[(e.user_id, e.workspace_id)].append(e)

    rows = []
    for (uid, wid), events in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][1] or "")):
        counters = _summary_counters(events)
        first, last = naive_utc(events[0].created_at), naive_utc(events[-1].created_at)
        rows.append(UserActivitySummary(
            user_id=uid,
            workspace_id=wid,
            period_type=period_type,
            period_start=start,
            period_end=end,
            total_events=len(events),
            tasks_created=counters["tasks_created"],
            tasks_completed=counters["tasks_completed"],
            tasks_updated=counters["tasks_updated"],
            sections_created=counters["sections_created"],
            workspaces_created=counters["workspaces_created"],
            searches_performed=counters["searches_performed"],
            logins=counters["logins"],
            active_minutes=max(1, int((last - first).total_seconds() // 60)),
            last_activity_at=last,
            most_active_hour=_most_active_hour(events),
        ))
    return rows


def compute_event_category_stats(period_type, period_start, workspace_id=None):
    """Build (unsaved) EventCategoryStats rows for one period from events."""
    start, end = period_bounds(period_type, period_start)
    groups = defaultdict(list)
    for e in _events_between(start, end, workspace_id):
        groups[(e.workspace_id, e.category, e.event_type, e.entity_type)].append(e)

    rows = []
    for (wid, category, event_type, entity_type), events in groups.items():
        rows.append(EventCategoryStats(
            workspace_id=wid,
            period_type=period_type,
            period_start=start,
            period_end=end,
            category=category,
            event_type=event_type,
            entity_type=entity_type,
            event_count=len(events),
            unique_users=len({e.user_id for e in events if e.user_id}),
            unique_entities=len({e.entity_id for e in events if e.entity_id}),
        ))
    return rows


_SUMMARY_FIELDS = [
    "period_end", "total_events", "tasks_created", "tasks_completed",
    "tasks_updated", "sections_created", "workspaces_created",
    "searches_performed", "logins", "active_minutes", "last_activity_at",
    "most_active_hour",
]

_STATS_FIELDS = ["period_end", "event_count", "unique_users", "unique_entities"]


def _upsert(model, fresh, key_fields, value_fields):
    clauses = []
    for f in key_fields:
        column, value = getattr(model, f), getattr(fresh, f)
        # NULL keys (events outside any workspace) never compare equal in SQL
        clauses.append(column.is_(None) if value is None else column == value)
    existing = model.query.filter(*clauses).first()
    if existing is None:
        db.session.add(fresh)
        return fresh
    for f in value_fields:
        setattr(existing, f, getattr(fresh, f))
    return existing


def aggregate_user_activity(period_type="day", period_start=None, workspace_id=None):
    """Upsert UserActivitySummary rows for the period containing period_start
    (default: now). Returns the number of rows written."""
    period_start = period_start or datetime.now(timezone.utc)
    rows = compute_user_activity(period_type, period_start, workspace_id)
    for row in rows:
        _upsert(
            UserActivitySummary, row,
            ["user_id", "workspace_id", "period_start", "period_type"],
            _SUMMARY_FIELDS,
        )
    db.session.flush()
    logger.info("Aggregated %d user activity rows (%s)", len(rows), period_type)
    return len(rows)


def aggregate_event_category_stats(period_type="day", period_start=None, workspace_id=None):
    period_start = period_start or datetime.now(timezone.utc)
    rows = compute_event_category_stats(period_type, period_start, workspace_id)
    for row in rows:
        _upsert(
            EventCategoryStats, row,
            ["workspace_id", "period_start", "period_type",
             "category", "event_type", "entity_type"],
            _STATS_FIELDS,
        )
    db.session.flush()
    logger.info("Aggregated %d event category rows (%s)", len(rows), period_type)
    return len(rows)


def archive_old_events(older_than_days=None, keep_critical=True, now=None):
    """Soft-delete events older than the retention window.

    Only is_deleted is touched. With keep_critical, security events at
    error/critical severity are retained regardless of age.

    Returns:
        Number of events archived.
    """
    if older_than_days is None:
        older_than_days = current_app.config["EVENT_RETENTION_DAYS"]
    cutoff = naive_utc(now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)

    q = Event.query.filter(
        Event.created_at < cutoff,
        Event.is_deleted.is_(False),
    )
    if keep_critical:
        q = q.filter(db.not_(db.and_(
            Event.category == "security",
            Event.severity.in_(CRITICAL_SEVERITIES),
        )))

    count = q.update({Event.is_deleted: True}, synchronize_session=False)
    db.session.flush()
    logger.info("Archived %d events older than %d days", count, older_than_days)
    return count


def cleanup_old_activity_summaries(older_than_days=None, now=None):
    """Delete hourly summaries past retention. Returns rows removed."""
    if older_than_days is None:
        older_than_days = current_app.config["SUMMARY_RETENTION_DAYS"]
    cutoff = naive_utc(now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)

    count = UserActivitySummary.query.filter(
        UserActivitySummary.period_type == "hour",
        UserActivitySummary.period_start < cutoff,
    ).delete(synchronize_session=False)
    db.session.flush()
    logger.info("Removed %d hourly activity summaries", count)
    return count
