"""Events blueprint — /api/events/*

Read-only JSON views over the events log. Every route requires login and is
scoped to the caller's workspaces.

Route Map:
  GET /api/events/recent                                  — Activity feed
  GET /api/events/timeline/<entity_type>/<entity_id>      — Entity timeline
  GET /api/events/metrics                                 — Activity metrics
  GET /api/events/security                                — Security events
  GET /api/events/audit                                   — Audit trail
  GET /api/events/summary/users                           — User rollups
  GET /api/events/summary/workspaces/<workspace_id>       — Category rollups
"""

from datetime import datetime

from flask import Blueprint, abort, g, jsonify, request

from taskgrid.decorators import api_login_required, workspace_member_required
from taskgrid.models.activity import PERIOD_TYPES
from taskgrid.models.event import Event
from taskgrid.services import activity_service

events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def _datetime_arg(name):
    """Parse an ISO-8601 query arg; 400 on garbage."""
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        abort(400, description=f"Invalid {name}: expected an ISO-8601 timestamp.")


def _period_type_arg():
    period_type = request.args.get("period_type", "day")
    if period_type not in PERIOD_TYPES:
        abort(400, description=f"Invalid period_type. Must be one of: {', '.join(PERIOD_TYPES)}")
    return period_type


# ─── Feed & timeline ─────────────────────────────────────────────

@events_bp.route("/recent")
@workspace_member_required
def recent():
    categories = request.args.getlist("category")
    if request.args.get("all_categories") == "1":
        categories = None
    elif not categories:
        categories = activity_service.DEFAULT_FEED_CATEGORIES
    items = activity_service.get_recent_activity(
        g.request_context,
        workspace_id=request.args.get("workspace_id"),
        user_id=request.args.get("user_id"),
        categories=categories,
        limit=request.args.get("limit", default=50, type=int),
        offset=request.args.get("offset", default=0, type=int),
    )
    return jsonify({"activity": [i.model_dump(mode="json") for i in items]})


@events_bp.route("/timeline/<entity_type>/<entity_id>")
@api_login_required
def timeline(entity_type, entity_id):
    if entity_type not in Event.ENTITY_TYPES:
        abort(404)
    items = activity_service.get_entity_activity_timeline(
        g.request_context,
        entity_type,
        entity_id,
        limit=request.args.get("limit", default=100, type=int),
    )
    return jsonify({"timeline": [i.model_dump(mode="json") for i in items]})


# ─── Metrics, security, audit ────────────────────────────────────

@events_bp.route("/metrics")
@workspace_member_required
def metrics():
    result = activity_service.get_activity_metrics(
        g.request_context,
        workspace_id=request.args.get("workspace_id"),
        user_id=request.args.get("user_id"),
        days=request.args.get("days", default=7, type=int),
    )
    return jsonify(result.model_dump())


@events_bp.route("/security")
@workspace_member_required
def security():
    severities = request.args.getlist("severity") or activity_service.SECURITY_SEVERITIES
    events = activity_service.get_security_events(
        g.request_context,
        workspace_id=request.args.get("workspace_id"),
        user_id=request.args.get("user_id"),
        severities=severities,
        days=request.args.get("days", default=30, type=int),
        limit=request.args.get("limit", default=100, type=int),
    )
    return jsonify({"events": events})


@events_bp.route("/audit")
@api_login_required
def audit():
    events = activity_service.get_audit_trail(
        g.request_context,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        user_id=request.args.get("user_id"),
        start=_datetime_arg("start"),
        end=_datetime_arg("end"),
        limit=request.args.get("limit", default=500, type=int),
    )
    return jsonify({"events": events})


# ─── Rollups ─────────────────────────────────────────────────────

@events_bp.route("/summary/users")
@workspace_member_required
def user_summary():
    try:
        rows = activity_service.get_user_activity_summary(
            g.request_context,
            user_id=request.args.get("user_id"),
            workspace_id=request.args.get("workspace_id"),
            period_type=_period_type_arg(),
            start=_datetime_arg("start"),
            end=_datetime_arg("end"),
        )
    except ValueError as e:
        abort(400, description=str(e))
    return jsonify({"summaries": rows})


@events_bp.route("/summary/workspaces/<workspace_id>")
@workspace_member_required
def workspace_summary(workspace_id):
    try:
        rows = activity_service.get_workspace_activity_stats(
            g.request_context,
            workspace_id,
            period_type=_period_type_arg(),
            start=_datetime_arg("start"),
            end=_datetime_arg("end"),
        )
    except ValueError as e:
        abort(400, description=str(e))
    return jsonify({"stats": rows})
