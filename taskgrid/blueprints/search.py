"""Search blueprint — /api/search/*

JSON endpoints over search_service. Every route requires login; results are
scoped to the caller's workspaces. A workspace_id outside that scope is 404.

Route Map:
  GET /api/search              — Ranked search over workspaces/sections/tasks
  GET /api/search/tasks        — Task search with structured filters
  GET /api/search/suggestions  — Type-ahead suggestions
  GET /api/search/stats        — Index coverage
  GET /api/search/metrics      — Index health numbers
"""

import logging
import time

from flask import Blueprint, current_app, g, jsonify, request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from taskgrid.decorators import workspace_member_required
from taskgrid.extensions import db, limiter
from taskgrid.search.schemas import TaskSearchFilters
from taskgrid.services import event_service, search_service
from taskgrid.services.search_service import SearchError

logger = logging.getLogger(__name__)

search_bp = Blueprint("search", __name__, url_prefix="/api/search")

UNASSIGNED = "unassigned"


def _search_unavailable():
    return jsonify({
        "error": "Search is temporarily unavailable. Please try again.",
        "retryable": True,
    }), 503


def _page_args():
    limit = request.args.get("limit", type=int)
    offset = request.args.get("offset", default=0, type=int)
    return limit, offset


def _elapsed_ms(started):
    return round((time.perf_counter() - started) * 1000, 2)


def _commit_search_log():
    """Commit the search event. A failure here never changes the response."""
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to commit search event")


# ─── Cross-entity search ─────────────────────────────────────────

@search_bp.route("")
@limiter.limit(lambda: current_app.config["SEARCH_RATE_LIMIT"])
@workspace_member_required
def search():
    ctx = g.request_context
    query = request.args.get("q", "")
    workspace_id = request.args.get("workspace_id")
    limit, offset = _page_args()

    started = time.perf_counter()
    try:
        results = search_service.search_all(
            ctx, query, workspace_id=workspace_id, limit=limit, offset=offset
        )
    except SearchError:
        return _search_unavailable()

    event_service.log_search_event(
        ctx,
        query,
        search_type="general",
        filters={"workspace_id": workspace_id},
        results_count=len(results),
        execution_time_ms=_elapsed_ms(started),
        workspace_id=workspace_id,
    )
    _commit_search_log()

    return jsonify({
        "query": query,
        "results": [r.model_dump(mode="json") for r in results],
        "count": len(results),
        "limit": limit,
        "offset": offset,
    })


# ─── Task search ─────────────────────────────────────────────────

def _task_filters():
    assignees = request.args.getlist("assignee")
    return TaskSearchFilters(
        workspace_id=request.args.get("workspace_id"),
        section_ids=request.args.getlist("section_id"),
        statuses=request.args.getlist("status"),
        priorities=request.args.getlist("priority"),
        assignee_ids=[None if a == UNASSIGNED else a for a in assignees],
        tags=request.args.getlist("tag"),
        due_date_from=request.args.get("due_from") or None,
        due_date_to=request.args.get("due_to") or None,
    )


@search_bp.route("/tasks")
@limiter.limit(lambda: current_app.config["SEARCH_RATE_LIMIT"])
@workspace_member_required
def search_tasks():
    ctx = g.request_context
    query = request.args.get("q", "")
    limit, offset = _page_args()

    try:
        filters = _task_filters()
    except ValidationError as e:
        return jsonify({"error": "Invalid filters.", "details": e.errors(include_url=False)}), 400

    started = time.perf_counter()
    try:
        results = search_service.search_tasks(
            ctx, query, filters=filters, limit=limit, offset=offset
        )
    except SearchError:
        return _search_unavailable()

    event_service.log_search_event(
        ctx,
        query,
        search_type="tasks",
        filters=filters.model_dump(mode="json", exclude_none=True),
        results_count=len(results),
        execution_time_ms=_elapsed_ms(started),
        workspace_id=filters.workspace_id,
    )
    _commit_search_log()

    return jsonify({
        "query": query,
        "results": [r.model_dump(mode="json") for r in results],
        "count": len(results),
        "limit": limit,
        "offset": offset,
    })


# ─── Suggestions ─────────────────────────────────────────────────

@search_bp.route("/suggestions")
@limiter.limit(lambda: current_app.config["SUGGESTION_RATE_LIMIT"])
@workspace_member_required
def suggestions():
    try:
        results = search_service.get_search_suggestions(
            g.request_context,
            request.args.get("q", ""),
            workspace_id=request.args.get("workspace_id"),
            limit=request.args.get("limit", default=10, type=int),
        )
    except SearchError:
        return _search_unavailable()
    return jsonify({"suggestions": [s.model_dump() for s in results]})


# ─── Stats ───────────────────────────────────────────────────────

@search_bp.route("/stats")
@workspace_member_required
def stats():
    try:
        result = search_service.get_search_stats(
            g.request_context, workspace_id=request.args.get("workspace_id")
        )
    except SearchError:
        return _search_unavailable()
    return jsonify(result.model_dump())


@search_bp.route("/metrics")
@workspace_member_required
def metrics():
    try:
        result = search_service.get_search_performance_metrics(
            g.request_context, workspace_id=request.args.get("workspace_id")
        )
    except SearchError:
        return _search_unavailable()
    return jsonify({"metrics": [m.model_dump() for m in result]})
