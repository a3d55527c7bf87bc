"""Request-context middleware — resolves the acting user into g.request_context.

Runs before every request. Sets g.request_context to a RequestContext
carrying the user id, their readable workspace ids, the request source
(api / mobile / web), client IP, user agent and session id.

Anonymous requests get a context with no user and an empty workspace scope.
"""

from flask import g, request, session
from flask_login import current_user

from taskgrid.context import RequestContext, client_ip, detect_source


def build_request_context(user=None):
    """Build a RequestContext for the current request.

    `user` overrides current_user (used right after login_user, before the
    proxy has been refreshed).
    """
    user = user if user is not None else current_user
    user_agent = request.headers.get("User-Agent")
    kwargs = dict(
        source=detect_source(request.path, user_agent),
        ip_address=client_ip(request),
        user_agent=user_agent,
        session_id=session.get("_id"),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    if user is not None and user.is_authenticated:
        return RequestContext.for_user(user.id, **kwargs)
    return RequestContext(**kwargs)


def resolve_request_context():
    """Before-request hook. Skips static files."""
    if request.path.startswith("/static/"):
        return
    g.request_context = build_request_context()


def init_request_context_middleware(app):
    """Register the context resolver as a before_request hook."""
    app.before_request(resolve_request_context)
