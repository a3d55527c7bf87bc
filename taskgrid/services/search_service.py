"""Search service — ranked cross-entity search, filtered task search,
type-ahead suggestions and index stats.

Every read is scoped to the workspaces in the caller's RequestContext. Soft-
deleted rows, archived sections and anything inside them are never returned.

Candidates come from the SearchPosting inverted index; ranking and snippets
are computed from each row's stored search_vector. Storage failures surface
as SearchError so callers can tell "no matches" from "search is down".
"""

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from taskgrid.extensions import db
from taskgrid.models.search_index import SearchPosting
from taskgrid.models.section import Section
from taskgrid.models.task import Task
from taskgrid.models.workspace import Workspace
from taskgrid.search import vector as search_vector
from taskgrid.search.query import parse_query
from taskgrid.search.ranking import make_snippet, rank
from taskgrid.search.schemas import (
    EntityIndexStats,
    SearchMetric,
    SearchResult,
    SearchStats,
    SearchSuggestion,
    TaskSearchFilters,
    TaskSearchResult,
)

logger = logging.getLogger(__name__)

ENTITY_MODELS = {"workspace": Workspace, "section": Section, "task": Task}

# Tie-break order when the same suggestion text comes from several sources
SUGGESTION_TYPE_ORDER = ["workspace", "section", "task", "tag"]


class SearchError(RuntimeError):
    """The search backend failed. Distinct from an empty result."""


def _page(limit, offset, default_key="SEARCH_DEFAULT_LIMIT", max_key="SEARCH_MAX_LIMIT"):
    """Clamp limit to [0, max] and offset to >= 0. A limit of 0 pages nothing."""
    if limit is None:
        limit = current_app.config[default_key]
    limit = max(0, min(int(limit), current_app.config[max_key]))
    offset = max(0, int(offset or 0))
    return limit, offset


def _escape_like(text):
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _candidate_ids(entity_type, parsed, scope):
    """Ids of entities whose postings cover every query term."""
    if parsed.is_prefix:
        lexeme_filter = or_(*[
            SearchPosting.lexeme.like(_escape_like(p) + "%", escape="\\")
            for p in parsed.prefixes()
        ])
    else:
        lexeme_filter = SearchPosting.lexeme.in_(parsed.terms)

    rows = (
        db.session.query(SearchPosting.entity_id, SearchPosting.lexeme)
        .filter(
            SearchPosting.entity_type == entity_type,
            SearchPosting.workspace_id.in_(scope),
            lexeme_filter,
        )
        .distinct()
        .all()
    )

    lexemes_by_entity = {}
    for entity_id, lex in rows:
        lexemes_by_entity.setdefault(entity_id, set()).add(lex)
    return {
        entity_id
        for entity_id, lexemes in lexemes_by_entity.items()
        if parsed.covers(lexemes)
    }


def _live_sections():
    return (
        Section.query
        .join(Workspace, Workspace.id == Section.workspace_id)
        .filter(
            Section.is_deleted.is_(False),
            Section.is_archived.is_(False),
            Workspace.is_deleted.is_(False),
        )
    )


def _live_tasks():
    return (
        Task.query
        .join(Section, Section.id == Task.section_id)
        .join(Workspace, Workspace.id == Task.workspace_id)
        .filter(
            Task.is_deleted.is_(False),
            Section.is_deleted.is_(False),
            Section.is_archived.is_(False),
            Workspace.is_deleted.is_(False),
        )
    )


# ─── Cross-entity search ────────────────────────────────────────


def _search_workspaces(parsed, scope):
    ids = _candidate_ids("workspace", parsed, scope)
    if not ids:
        return []
    rows = Workspace.query.filter(
        Workspace.id.in_(ids), Workspace.is_deleted.is_(False)
    ).all()
    results = []
    for ws in rows:
        score = rank(ws.search_vector, parsed)
        if score <= 0:
            continue
        results.append(SearchResult(
            entity_type="workspace",
            entity_id=ws.id,
            title=ws.name,
            description=ws.description,
            workspace_id=ws.id,
            workspace_name=ws.name,
            relevance_score=score,
            context_snippet=make_snippet(ws.description or ws.name, parsed),
            entity_data=ws.to_dict(),
            created_at=ws.created_at,
            updated_at=ws.updated_at,
        ))
    return results


def _search_sections(parsed, scope):
    ids = _candidate_ids("section", parsed, scope)
    if not ids:
        return []
    rows = _live_sections().filter(Section.id.in_(ids)).all()
    results = []
    for section in rows:
        score = rank(section.search_vector, parsed)
        if score <= 0:
            continue
        results.append(SearchResult(
            entity_type="section",
            entity_id=section.id,
            title=section.name,
            description=section.description,
            workspace_id=section.workspace_id,
            workspace_name=section.workspace.name,
            relevance_score=score,
            context_snippet=make_snippet(section.description or section.name, parsed),
            entity_data=section.to_dict(),
            created_at=section.created_at,
            updated_at=section.updated_at,
        ))
    return results


def _search_tasks_ranked(parsed, scope):
    ids = _candidate_ids("task", parsed, scope)
    if not ids:
        return []
    rows = _live_tasks().filter(Task.id.in_(ids)).all()
    results = []
    for task in rows:
        score = rank(task.search_vector, parsed)
        if score <= 0:
            continue
        results.append(SearchResult(
            entity_type="task",
            entity_id=task.id,
            title=task.title,
            description=task.description,
            workspace_id=task.workspace_id,
            workspace_name=task.workspace.name,
            section_id=task.section_id,
            section_name=task.section.name,
            relevance_score=score,
            context_snippet=make_snippet(task.description or task.title, parsed),
            entity_data=task.to_dict(),
            created_at=task.created_at,
            updated_at=task.updated_at,
        ))
    return results


def search_all(ctx, query, workspace_id=None, limit=None, offset=0):
    """Ranked search over workspaces, sections and tasks.

    Args:
        ctx: RequestContext of the caller.
        query: Free text. Empty or unparseable text returns [].
        workspace_id: Optional narrowing; a workspace outside the caller's
            scope returns [].
        limit / offset: Pagination, clamped to SEARCH_MAX_LIMIT.

    Returns:
        list[SearchResult] ordered by relevance_score descending.

    Raises:
        SearchError: If the database fails.
    """
    limit, offset = _page(limit, offset)
    parsed = parse_query(query)
    if parsed is None:
        return []
    scope = ctx.scope(workspace_id)
    if not scope:
        return []

    try:
        results = (
            _search_workspaces(parsed, scope)
            + _search_sections(parsed, scope)
            + _search_tasks_ranked(parsed, scope)
        )
    except SQLAlchemyError as e:
        logger.exception("search_all failed for %r", query)
        raise SearchError("Search is temporarily unavailable.") from e

    results.sort(key=lambda r: (-r.relevance_score, r.entity_type, r.title))
    return results[offset:offset + limit]


# ─── Task search ────────────────────────────────────────────────


def _task_result(task, score, parsed):
    return TaskSearchResult(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        assigned_to_user_id=task.assigned_to_user_id,
        assignee_name=task.assignee.name if task.assignee else None,
        created_by_user_id=task.created_by_user_id,
        creator_name=task.creator.name if task.creator else None,
        due_date=task.due_date,
        tags=list(task.tags or []),
        section_id=task.section_id,
        section_name=task.section.name,
        workspace_id=task.workspace_id,
        workspace_name=task.workspace.name,
        relevance_score=score,
        context_snippet=make_snippet(task.description or task.title, parsed),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def search_tasks(ctx, query="", filters=None, limit=None, offset=0):
    """Task search with structured filters.

    With an empty query this is a filtered listing: relevance_score is 0 and
    results are newest first. With a query, every returned task matches it
    and results are ordered by relevance, then newest first.

    A due-date range with from > to matches nothing.
    """
    limit, offset = _page(limit, offset)
    if filters is None:
        filters = TaskSearchFilters()
    elif isinstance(filters, dict):
        filters = TaskSearchFilters(**filters)

    parsed = None
    if query and str(query).strip():
        parsed = parse_query(query)
        if parsed is None:
            return []

    scope = ctx.scope(filters.workspace_id)
    if not scope:
        return []

    try:
        q = _live_tasks().filter(Task.workspace_id.in_(scope))
        if parsed is not None:
            ids = _candidate_ids("task", parsed, scope)
            if not ids:
                return []
            q = q.filter(Task.id.in_(ids))

        if filters.section_ids:
            q = q.filter(Task.section_id.in_(filters.section_ids))
        if filters.statuses:
            q = q.filter(Task.status.in_(filters.statuses))
        if filters.priorities:
            q = q.filter(Task.priority.in_(filters.priorities))
        if filters.assignee_ids:
            assigned = [a for a in filters.assignee_ids if a is not None]
            clauses = []
            if assigned:
                clauses.append(Task.assigned_to_user_id.in_(assigned))
            if len(assigned) != len(filters.assignee_ids):
                clauses.append(Task.assigned_to_user_id.is_(None))
            q = q.filter(or_(*clauses))
        if filters.due_date_from is not None:
            q = q.filter(Task.due_date >= filters.due_date_from)
        if filters.due_date_to is not None:
            q = q.filter(Task.due_date <= filters.due_date_to)

        rows = q.all()

        # Tags are a JSON array; overlap is checked on the decoded values
        if filters.tags:
            wanted = set(filters.tags)
            rows = [t for t in rows if wanted & set(t.tags or [])]

        scored = []
        for task in rows:
            score = rank(task.search_vector, parsed) if parsed is not None else 0.0
            if parsed is not None and score <= 0:
                continue
            scored.append((score, task))

        # Newest first, then stable sort by score
        scored.sort(key=lambda pair: pair[1].created_at or datetime.min, reverse=True)
        scored.sort(key=lambda pair: pair[0], reverse=True)

        return [
            _task_result(task, score, parsed)
            for score, task in scored[offset:offset + limit]
        ]
    except SQLAlchemyError as e:
        logger.exception("search_tasks failed for %r", query)
        raise SearchError("Search is temporarily unavailable.") from e


# ─── Suggestions ────────────────────────────────────────────────


def get_search_suggestions(ctx, partial, workspace_id=None, limit=10):
    """Type-ahead suggestions from workspace names, section names, task
    titles and tags containing `partial` (case-insensitive).

    Identical suggestion texts from different sources are merged: counts are
    summed and the type of the largest contributor is kept.
    """
    text = (partial or "").strip()
    if not text:
        return []
    limit = max(1, min(int(limit or 10), current_app.config["SUGGESTION_MAX_LIMIT"]))
    scope = ctx.scope(workspace_id)
    if not scope:
        return []

    # Matching is done on casefolded text: SQLite's LIKE only folds ASCII
    needle = text.casefold()
    counts = {}  # suggestion -> {type: count}

    def add(suggestion, suggestion_type, count=1):
        if needle not in str(suggestion).casefold():
            return
        per_type = counts.setdefault(suggestion, {})
        per_type[suggestion_type] = per_type.get(suggestion_type, 0) + count

    try:
        ws_rows = (
            db.session.query(Workspace.name, func.count(Workspace.id))
            .filter(Workspace.id.in_(scope), Workspace.is_deleted.is_(False))
            .group_by(Workspace.name)
            .all()
        )
        section_rows = (
            _live_sections()
            .with_entities(Section.name, func.count(Section.id))
            .filter(Section.workspace_id.in_(scope))
            .group_by(Section.name)
            .all()
        )
        task_rows = (
            _live_tasks()
            .with_entities(Task.title, func.count(Task.id))
            .filter(Task.workspace_id.in_(scope))
            .group_by(Task.title)
            .all()
        )
        tag_rows = (
            _live_tasks()
            .with_entities(Task.tags)
            .filter(Task.workspace_id.in_(scope), Task.tags.isnot(None))
            .all()
        )
    except SQLAlchemyError as e:
        logger.exception("get_search_suggestions failed for %r", partial)
        raise SearchError("Search is temporarily unavailable.") from e

    for name, count in ws_rows:
        add(name, "workspace", count)
    for name, count in section_rows:
        add(name, "section", count)
    for title, count in task_rows:
        add(title, "task", count)
    for (tags,) in tag_rows:
        for tag in set(tags or []):
            add(tag, "tag")

    suggestions = []
    for suggestion, per_type in counts.items():
        top_type = max(
            per_type,
            key=lambda t: (per_type[t], -SUGGESTION_TYPE_ORDER.index(t)),
        )
        suggestions.append(SearchSuggestion(
            suggestion=suggestion,
            suggestion_type=top_type,
            match_count=sum(per_type.values()),
        ))

    suggestions.sort(key=lambda s: (-s.match_count, s.suggestion))
    return suggestions[:limit]


# ─── Stats & metrics ────────────────────────────────────────────


def _entity_counts(model, scope):
    workspace_col = model.id if model is Workspace else model.workspace_id
    base = db.session.query(model).filter(
        workspace_col.in_(scope), model.is_deleted.is_(False)
    )
    total = base.count()
    indexed = base.filter(model.search_vector.isnot(None)).count()
    return total, indexed


def get_search_stats(ctx, workspace_id=None):
    """Counts of live entities in scope and how many carry a search vector.

    Coverage is 100.0 when there is nothing to index.
    """
    scope = ctx.scope(workspace_id)
    entities = []
    try:
        for entity_type, model in ENTITY_MODELS.items():
            if scope:
                total, indexed = _entity_counts(model, scope)
            else:
                total, indexed = 0, 0
            entities.append(EntityIndexStats(entity_type=entity_type, total=total, indexed=indexed))
    except SQLAlchemyError as e:
        logger.exception("get_search_stats failed")
        raise SearchError("Search is temporarily unavailable.") from e

    total = sum(e.total for e in entities)
    indexed = sum(e.indexed for e in entities)
    coverage = 100.0 if total == 0 else round(indexed * 100.0 / total, 2)
    by_type = {e.entity_type: e.total for e in entities}
    return SearchStats(
        workspace_count=by_type["workspace"],
        section_count=by_type["section"],
        task_count=by_type["task"],
        total_indexed_entities=indexed,
        search_coverage_percentage=coverage,
        entities=entities,
    )


def get_search_performance_metrics(ctx, workspace_id=None):
    """Index health numbers: searchable entity count, average vector size
    per entity type, tag usage and the number of posting rows in scope."""
    try:
        return _performance_metrics(ctx.scope(workspace_id))
    except SQLAlchemyError as e:
        logger.exception("get_search_performance_metrics failed")
        raise SearchError("Search is temporarily unavailable.") from e


def _performance_metrics(scope):
    searchable = 0
    tag_lists = []
    if scope:
        for model in ENTITY_MODELS.values():
            searchable += _entity_counts(model, scope)[1]
        tag_lists = [
            tags for (tags,) in db.session.query(Task.tags).filter(
                Task.workspace_id.in_(scope), Task.is_deleted.is_(False)
            )
        ]
    tagged = sum(1 for tags in tag_lists if tags)
    unique_tags = {tag for tags in tag_lists for tag in (tags or [])}

    metrics = [
        SearchMetric(
            metric_name="total_searchable_entities",
            metric_value=float(searchable),
            metric_description="Live entities carrying a search vector",
        ),
        SearchMetric(
            metric_name="unique_tags_count",
            metric_value=float(len(unique_tags)),
            metric_description="Distinct task tags",
        ),
        SearchMetric(
            metric_name="tasks_with_tags_percentage",
            metric_value=round(tagged * 100.0 / len(tag_lists), 2) if tag_lists else 0.0,
            metric_description="Share of tasks with at least one tag",
        ),
    ]
    for entity_type, model in ENTITY_MODELS.items():
        sizes = []
        if scope:
            workspace_col = model.id if model is Workspace else model.workspace_id
            rows = (
                db.session.query(model.search_vector)
                .filter(
                    workspace_col.in_(scope),
                    model.is_deleted.is_(False),
                    model.search_vector.isnot(None),
                )
                .all()
            )
            sizes = [len(vector or {}) for (vector,) in rows]
        average = round(sum(sizes) / len(sizes), 2) if sizes else 0.0
        metrics.append(SearchMetric(
            metric_name=f"avg_{entity_type}_vector_size",
            metric_value=average,
            metric_description=f"Average distinct lexemes per {entity_type}",
        ))

    postings = 0
    if scope:
        postings = SearchPosting.query.filter(SearchPosting.workspace_id.in_(scope)).count()
    metrics.append(SearchMetric(
        metric_name="index_postings",
        metric_value=float(postings),
        metric_description="Rows in the inverted search index",
    ))
    return metrics


def rebuild_search_vectors(entity_type="all"):
    """Recompute vectors and postings for every live entity of a type.

    Maintenance path (CLI). Flushes but does NOT commit.

    Returns:
        dict mapping entity_type -> rows rebuilt.
    """
    if entity_type == "all":
        selected = list(ENTITY_MODELS.items())
    elif entity_type in ENTITY_MODELS:
        selected = [(entity_type, ENTITY_MODELS[entity_type])]
    else:
        raise ValueError(
            f"Invalid entity type '{entity_type}'. Must be one of: all, "
            f"{', '.join(ENTITY_MODELS)}"
        )

    counts = {}
    for name, model in selected:
        rows = model.query.filter(model.is_deleted.is_(False)).all()
        for row in rows:
            row.search_vector = search_vector.vector_for(row)
        db.session.flush()
        connection = db.session.connection()
        for row in rows:
            search_vector.write_postings(connection, row)
        counts[name] = len(rows)
        logger.info("Rebuilt %d %s search vectors", len(rows), name)
    return counts
