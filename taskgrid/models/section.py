"""Section model — an ordered lane of tasks inside a workspace."""

import uuid

from taskgrid.extensions import db


class Section(db.Model):
    __tablename__ = "sections"

    SEARCH_FIELDS = [("name", "A"), ("description", "B")]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False, index=True
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    color = db.Column(db.String(7), default="#6b7280")
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
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
    workspace = db.relationship("Workspace", back_populates="sections")
    tasks = db.relationship(
        "Task",
        back_populates="section",
        lazy="dynamic",
        order_by="Task.position",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "position": self.position,
            "color": self.color,
            "is_archived": self.is_archived,
            "workspace_id": self.workspace_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Section {self.name}>"
