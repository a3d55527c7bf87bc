"""Workspace models.

- Workspace: the top-level container (sections and tasks live inside it).
- WorkspaceMember: join table linking users to workspaces. Membership is
  the read-scope for search and activity queries.
"""

import uuid

from taskgrid.extensions import db


class Workspace(db.Model):
    __tablename__ = "workspaces"

    # Weighted text fields feeding search_vector: (attribute, weight tier)
    SEARCH_FIELDS = [("name", "A"), ("description", "B")]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    color = db.Column(db.String(7), default="#6366f1")
    icon = db.Column(db.String(50), nullable=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    # Derived: recomputed by taskgrid.search.vector on every write
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
    owner = db.relationship("User", foreign_keys=[owner_id])
    members = db.relationship(
        "WorkspaceMember", back_populates="workspace", lazy="dynamic"
    )
    sections = db.relationship(
        "Section", back_populates="workspace", lazy="dynamic"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Workspace {self.name}>"


class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"

    ROLES = ["owner", "admin", "member", "viewer"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False
    )
    role = db.Column(db.String(20), default="member")
    invited_by_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "workspace_id", name="uq_user_workspace"
        ),
    )

    # --- Relationships ---
    user = db.relationship(
        "User", foreign_keys=[user_id], back_populates="workspace_memberships"
    )
    workspace = db.relationship("Workspace", back_populates="members")

    def __repr__(self):
        return f"<WorkspaceMember user={self.user_id} workspace={self.workspace_id}>"
