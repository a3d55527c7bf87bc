"""Activity rollup models.

- UserActivitySummary: per user / workspace / period counters.
- EventCategoryStats: per workspace / period / category breakdown.

Both are caches over the events table. They can always be rebuilt from raw
events by taskgrid.services.rollup_service.
"""

import uuid

from taskgrid.extensions import db


PERIOD_TYPES = ["hour", "day", "week", "month"]


class UserActivitySummary(db.Model):
    __tablename__ = "user_activity_summary"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=True
    )

    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)
    period_type = db.Column(db.String(10), nullable=False, default="day")

    total_events = db.Column(db.Integer, default=0)
    tasks_created = db.Column(db.Integer, default=0)
    tasks_completed = db.Column(db.Integer, default=0)
    tasks_updated = db.Column(db.Integer, default=0)
    sections_created = db.Column(db.Integer, default=0)
    workspaces_created = db.Column(db.Integer, default=0)
    searches_performed = db.Column(db.Integer, default=0)
    logins = db.Column(db.Integer, default=0)

    active_minutes = db.Column(db.Integer, default=0)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)
    most_active_hour = db.Column(db.Integer, nullable=True)  # 0-23

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "workspace_id", "period_start", "period_type",
            name="uq_user_activity_summary_period",
        ),
        db.Index(
            "ix_user_activity_summary_user_period",
            "user_id", "period_type", "period_start",
        ),
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "period_type": self.period_type,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "total_events": self.total_events,
            "tasks_created": self.tasks_created,
            "tasks_completed": self.tasks_completed,
            "tasks_updated": self.tasks_updated,
            "sections_created": self.sections_created,
            "workspaces_created": self.workspaces_created,
            "searches_performed": self.searches_performed,
            "logins": self.logins,
            "active_minutes": self.active_minutes,
            "last_activity_at": (
                self.last_activity_at.isoformat() if self.last_activity_at else None
            ),
            "most_active_hour": self.most_active_hour,
        }

    def __repr__(self):
        return f"<UserActivitySummary {self.user_id} {self.period_type} {self.period_start}>"


class EventCategoryStats(db.Model):
    __tablename__ = "event_category_stats"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=True
    )

    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)
    period_type = db.Column(db.String(10), nullable=False, default="day")

    category = db.Column(db.String(20), nullable=False)
    event_type = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(50), nullable=True)

    event_count = db.Column(db.Integer, default=0)
    unique_users = db.Column(db.Integer, default=0)
    unique_entities = db.Column(db.Integer, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "workspace_id", "period_start", "period_type",
            "category", "event_type", "entity_type",
            name="uq_event_category_stats_period",
        ),
        db.Index(
            "ix_event_category_stats_workspace_period",
            "workspace_id", "period_type", "period_start",
        ),
    )

    def to_dict(self):
        return {
            "workspace_id": self.workspace_id,
            "period_type": self.period_type,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "event_count": self.event_count,
            "unique_users": self.unique_users,
            "unique_entities": self.unique_entities,
        }

    def __repr__(self):
        return f"<EventCategoryStats {self.category}.{self.event_type} {self.period_start}>"
