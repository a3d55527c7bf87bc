"""RequestContext — who is acting, from where, and what they may read.

Every service call that reads scoped data or logs an event takes a
RequestContext explicitly instead of reaching for flask.g or current_user.
Routes get one from the request-context middleware; CLI commands and jobs
use RequestContext.system().
"""

import re
import uuid
from dataclasses import dataclass, field, replace

from taskgrid.extensions import db

_MOBILE_UA_RE = re.compile(r"Mobile|Android|iPhone|iPad", re.IGNORECASE)


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None = None
    workspace_ids: frozenset = field(default_factory=frozenset)
    source: str = "web"
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    correlation_id: str | None = None

    @property
    def is_authenticated(self):
        return self.user_id is not None

    def can_read(self, workspace_id):
        return workspace_id is not None and workspace_id in self.workspace_ids

    def scope(self, workspace_id=None):
        """Workspace ids a query may touch, narrowed to one if given.

        An inaccessible workspace_id yields an empty scope, never an error,
        so callers can't discover whether other workspaces exist.
        """
        if workspace_id is None:
            return sorted(self.workspace_ids)
        return [workspace_id] if self.can_read(workspace_id) else []

    def with_workspace(self, workspace_id):
        return replace(self, workspace_ids=self.workspace_ids | {workspace_id})

    def with_correlation(self, correlation_id=None):
        return replace(self, correlation_id=correlation_id or generate_correlation_id())

    @classmethod
    def for_user(cls, user_id, **kwargs):
        """Build a context for a user, loading their workspace memberships."""
        return cls(
            user_id=user_id,
            workspace_ids=frozenset(readable_workspace_ids(user_id)),
            **kwargs,
        )

    @classmethod
    def system(cls, source="system"):
        return cls(user_id=None, source=source)


def generate_correlation_id():
    return str(uuid.uuid4())


def readable_workspace_ids(user_id):
    """Ids of live workspaces the user is a member of."""
    if user_id is None:
        return set()

    from taskgrid.models.workspace import Workspace, WorkspaceMember

    rows = (
        db.session.query(WorkspaceMember.workspace_id)
        .join(Workspace, Workspace.id == WorkspaceMember.workspace_id)
        .filter(
            WorkspaceMember.user_id == user_id,
            Workspace.is_deleted.is_(False),
        )
        .all()
    )
    return {row.workspace_id for row in rows}


def detect_source(path, user_agent):
    """Classify where a request came from: api, mobile or web."""
    if path and path.startswith("/api/"):
        return "api"
    if user_agent and _MOBILE_UA_RE.search(user_agent):
        return "mobile"
    return "web"


def client_ip(request):
    """First hop from X-Forwarded-For, then X-Real-IP, then the socket."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr
