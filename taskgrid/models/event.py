"""Event model — the append-only audit log.

One row per logged action. The log drives the activity feed, entity
timelines, rollup summaries and security/audit queries. Rows are never
updated after insert except for the is_deleted retention flag, and never
hard-deleted by application code (see the mapper guards at the bottom).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event as sa_event
from sqlalchemy import inspect

from taskgrid.extensions import db


class Event(db.Model):
    __tablename__ = "events"

    EVENT_TYPES = [
        # Core CRUD
        "created", "updated", "deleted", "restored",
        # Status and state
        "archived", "unarchived", "status_changed", "completed", "reopened",
        # Assignment
        "assigned", "unassigned", "reassigned", "ownership_transferred",
        # Movement
        "moved", "reordered", "duplicated", "merged",
        # Membership
        "member_added", "member_removed", "member_invited",
        "invitation_accepted", "invitation_declined",
        "role_changed", "permission_changed", "access_granted", "access_revoked",
        # Authentication
        "login", "logout", "login_failed", "password_changed",
        "mfa_enabled", "mfa_disabled", "api_key_created", "api_key_revoked",
        "suspicious_activity",
        # System
        "search_performed", "export_generated", "import_completed",
        "backup_created", "settings_changed",
        "integration_connected", "integration_disconnected",
        # Interaction
        "viewed", "commented", "mentioned", "watched", "unwatched",
        "notification_sent", "email_sent", "reminder_triggered",
    ]

    ENTITY_TYPES = [
        "user", "workspace", "workspace_member", "section", "task",
        "comment", "attachment", "notification", "integration", "api_key",
        "session",
    ]

    CATEGORIES = [
        "user_action", "system", "security", "integration", "automation", "error",
    ]
    SEVERITIES = ["debug", "info", "warning", "error", "critical"]
    SOURCES = [
        "web", "api", "mobile", "integration", "system", "automation", "webhook",
    ]

    # The only column that may change after insert
    MUTABLE_COLUMNS = {"is_deleted"}

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=True
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # null for system-originated events

    event_type = db.Column(db.String(50), nullable=False, default="updated")
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(36), nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    delta = db.Column(db.JSON, nullable=True)

    category = db.Column(db.String(20), nullable=False, default="user_action")
    severity = db.Column(db.String(20), nullable=False, default="info")
    source = db.Column(db.String(20), nullable=False, default="web")
    correlation_id = db.Column(db.String(64), nullable=True, index=True)
    related_entity_type = db.Column(db.String(50), nullable=True)
    related_entity_id = db.Column(db.String(36), nullable=True)
    context = db.Column(db.JSON, default=dict)
    tags = db.Column(db.JSON, default=list)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    session_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.Index("ix_events_workspace_created", "workspace_id", "created_at"),
        db.Index("ix_events_entity", "entity_type", "entity_id"),
        db.Index("ix_events_related_entity", "related_entity_type", "related_entity_id"),
        db.Index("ix_events_category_severity", "category", "severity"),
        db.Index("ix_events_user_created", "user_id", "created_at"),
    )

    # --- Relationships ---
    user = db.relationship("User", lazy="joined")
    workspace = db.relationship("Workspace", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "delta": self.delta,
            "category": self.category,
            "severity": self.severity,
            "source": self.source,
            "correlation_id": self.correlation_id,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "context": self.context or {},
            "tags": list(self.tags or []),
            "user_name": self.user.name if self.user else None,
            "workspace_name": self.workspace.name if self.workspace else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Event {self.entity_type}.{self.event_type}>"


class ImmutableEventError(RuntimeError):
    """Raised when application code tries to rewrite or delete an event row."""


@sa_event.listens_for(Event, "before_update")
def _guard_event_update(mapper, connection, target):
    state = inspect(target)
    for attr in state.mapper.column_attrs:
        if attr.key in Event.MUTABLE_COLUMNS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ImmutableEventError(
                f"Event {target.id} is immutable (attempted to change '{attr.key}')."
            )


@sa_event.listens_for(Event, "before_delete")
def _guard_event_delete(mapper, connection, target):
    raise ImmutableEventError(
        f"Event {target.id} cannot be deleted; set is_deleted instead."
    )
