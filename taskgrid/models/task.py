"""Task model.

Tasks belong to a section and carry a denormalized workspace_id so that
workspace-scoped queries don't need to join through sections.
"""

import uuid

from taskgrid.extensions import db


class Task(db.Model):
    __tablename__ = "tasks"

    STATUSES = ["todo", "in_progress", "completed", "cancelled", "on_hold"]
    COMPLETED = "completed"

    PRIORITIES = ["low", "medium", "high", "urgent"]

    # Tags are indexed too, at the lowest tier
    SEARCH_FIELDS = [("title", "A"), ("description", "B"), ("tags", "C")]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    section_id = db.Column(
        db.String(36), db.ForeignKey("sections.id"), nullable=False, index=True
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False, index=True
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="todo")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    assigned_to_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    created_by_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    due_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    tags = db.Column(db.JSON, default=list)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    search_vector = db.Column(db.JSON(none_as_null=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    section = db.relationship("Section", back_populates="tasks")
    workspace = db.relationship("Workspace")
    assignee = db.relationship("User", foreign_keys=[assigned_to_user_id])
    creator = db.relationship("User", foreign_keys=[created_by_user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "assigned_to_user_id": self.assigned_to_user_id,
            "created_by_user_id": self.created_by_user_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "tags": list(self.tags or []),
            "section_id": self.section_id,
            "workspace_id": self.workspace_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.title[:40]}>"
