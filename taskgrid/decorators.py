"""
Custom route decorators for access control.

- api_login_required: ensures the user is logged in and g.request_context
  has been resolved for them.
- workspace_member_required: additionally checks that the workspace named by
  the `workspace_id` view arg or query parameter is in the caller's scope.
  Missing and foreign workspaces both give 404.
"""

from functools import wraps

from flask import abort, g, request
from flask_login import login_required

from taskgrid.middleware.request_context import build_request_context


def api_login_required(f):
    """Require login and make sure g.request_context is populated."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        ctx = getattr(g, "request_context", None)
        if ctx is None or not ctx.is_authenticated:
            g.request_context = build_request_context()
        return f(*args, **kwargs)

    return decorated


def workspace_member_required(f):
    """Require login + membership of the requested workspace (if any)."""

    @wraps(f)
    @api_login_required
    def decorated(*args, **kwargs):
        workspace_id = kwargs.get("workspace_id") or request.args.get("workspace_id")
        if workspace_id and not g.request_context.can_read(workspace_id):
            abort(404)
        return f(*args, **kwargs)

    return decorated
