"""Tests for search_service.

Covers:
- Ranked cross-entity search, scope isolation, soft-delete/archive filtering
- Fallback parsing never raises; unusable queries return []
- Pagination clamping
- Task search filters (status, priority, assignee incl. unassigned, tags,
  due-date range) and filter-only listings
- Suggestions, stats, metrics, rebuild
- Storage failures surface as SearchError
"""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from taskgrid.context import RequestContext
from taskgrid.extensions import db
from taskgrid.models.search_index import SearchPosting
from taskgrid.models.section import Section
from taskgrid.models.task import Task
from taskgrid.search.schemas import TaskSearchFilters
from taskgrid.services import search_service
from taskgrid.services.search_service import SearchError


# ─── Helpers ───────────────────────────────────────────────

def _ctx(user_id):
    return RequestContext.for_user(user_id)


def _ids(results):
    return [r.entity_id for r in results]


def _task_ids(results):
    return [r.id for r in results]


def _make_task(section_id, workspace_id, creator_id, title, **kwargs):
    task = Task(
        section_id=section_id,
        workspace_id=workspace_id,
        created_by_user_id=creator_id,
        title=title,
        **kwargs,
    )
    db.session.add(task)
    db.session.flush()
    return task


def _boom(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("database is down"))


# ─── search_all ────────────────────────────────────────────

class TestSearchAll:

    def test_finds_task_by_title(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login bug")
            assert seed_data["login_task_id"] in _ids(results)
            hit = next(r for r in results if r.entity_id == seed_data["login_task_id"])
            assert hit.entity_type == "task"
            assert hit.workspace_name == "Product Launch"
            assert hit.section_name == "Backlog"
            assert hit.relevance_score > 0

    def test_title_match_outranks_description_match(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login")
            ids = _ids(results)
            assert ids.index(seed_data["login_task_id"]) < ids.index(seed_data["notes_task_id"])
            scores = [r.relevance_score for r in results]
            assert scores == sorted(scores, reverse=True)

    def test_equal_scores_break_ties_on_plain_title(self, app, seed_data):
        with app.app_context():
            for title in ("alpha plan", "Beta plan"):
                _make_task(
                    seed_data["backlog_id"], seed_data["workspace_id"],
                    seed_data["alice_id"], title,
                )
            db.session.commit()
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "plan")
            assert [r.title for r in results] == ["Beta plan", "alpha plan"]
            assert results[0].relevance_score == results[1].relevance_score

    def test_never_returns_other_workspaces(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "vault login")
            assert results == []
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login")
            assert seed_data["secret_task_id"] not in _ids(results)
            assert all(r.workspace_id == seed_data["workspace_id"] for r in results)

    def test_owner_of_other_workspace_sees_only_their_own(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["carol_id"]), "login")
            assert _ids(results) == [seed_data["secret_task_id"]]

    def test_foreign_workspace_filter_returns_empty(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(
                _ctx(seed_data["alice_id"]), "login",
                workspace_id=seed_data["other_workspace_id"],
            )
            assert results == []

    def test_matches_workspaces_and_sections(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "launch")
            assert (seed_data["workspace_id"], "workspace") in [
                (r.entity_id, r.entity_type) for r in results
            ]
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "progress")
            assert [r.entity_type for r in results] == ["section"]
            assert results[0].entity_id == seed_data["doing_id"]

    def test_soft_deleted_task_excluded(self, app, seed_data):
        with app.app_context():
            task = db.session.get(Task, seed_data["login_task_id"])
            task.is_deleted = True
            db.session.commit()
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login bug")
            assert seed_data["login_task_id"] not in _ids(results)

    def test_archived_section_hides_section_and_tasks(self, app, seed_data):
        with app.app_context():
            section = db.session.get(Section, seed_data["doing_id"])
            section.is_archived = True
            db.session.commit()
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "ranking")
            assert results == []
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "progress")
            assert results == []

    def test_empty_and_unusable_queries_return_empty(self, app, seed_data):
        with app.app_context():
            ctx = _ctx(seed_data["alice_id"])
            assert search_service.search_all(ctx, "") == []
            assert search_service.search_all(ctx, "   ") == []
            assert search_service.search_all(ctx, "&&& |||") == []

    def test_special_characters_still_search(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login & bug!")
            assert seed_data["login_task_id"] in _ids(results)

    def test_stop_word_prefix_fallback(self, app, seed_data):
        with app.app_context():
            # "out" alone is a stop word; as a prefix it matches "outrank"
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "out")
            assert seed_data["ranking_task_id"] in _ids(results)

    def test_snippet_highlights_match(self, app, seed_data):
        with app.app_context():
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "password")
            hit = next(r for r in results if r.entity_id == seed_data["login_task_id"])
            assert "<b>password</b>" in hit.context_snippet

    def test_limit_is_clamped(self, app, seed_data):
        with app.app_context():
            for i in range(60):
                _make_task(
                    seed_data["backlog_id"], seed_data["workspace_id"],
                    seed_data["alice_id"], f"Bulk import item {i}",
                )
            db.session.commit()
            ctx = _ctx(seed_data["alice_id"])
            # TestConfig caps at 50
            assert len(search_service.search_all(ctx, "bulk", limit=1000)) == 50
            assert search_service.search_all(ctx, "bulk", limit=0) == []
            assert search_service.search_all(ctx, "bulk", limit=-3) == []
            assert search_service.search_tasks(ctx, "bulk", limit=0) == []
            assert len(search_service.search_all(ctx, "bulk", limit=10, offset=55)) == 5

    def test_anonymous_context_sees_nothing(self, app, seed_data):
        with app.app_context():
            assert search_service.search_all(RequestContext(), "login") == []

    def test_database_failure_raises_search_error(self, app, seed_data, monkeypatch):
        with app.app_context():
            monkeypatch.setattr(search_service, "_candidate_ids", _boom)
            with pytest.raises(SearchError):
                search_service.search_all(_ctx(seed_data["alice_id"]), "login")


# ─── search_tasks ──────────────────────────────────────────

class TestSearchTasks:

    def test_query_with_status_filter(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "search",
                filters=TaskSearchFilters(statuses=["in_progress"]),
            )
            assert _task_ids(results) == [seed_data["ranking_task_id"]]
            assert results[0].relevance_score > 0
            assert results[0].assignee_name == "Alice"
            assert results[0].creator_name == "Alice"

    def test_empty_query_lists_with_zero_relevance(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(_ctx(seed_data["alice_id"]), "")
            assert len(results) == 3
            assert all(r.relevance_score == 0 for r in results)
            assert seed_data["secret_task_id"] not in _task_ids(results)

    def test_every_result_matches_query(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(_ctx(seed_data["alice_id"]), "login")
            assert set(_task_ids(results)) == {
                seed_data["login_task_id"], seed_data["notes_task_id"]
            }

    def test_priority_filter(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "",
                filters={"priorities": ["urgent", "high"]},
            )
            assert set(_task_ids(results)) == {
                seed_data["login_task_id"], seed_data["ranking_task_id"]
            }

    def test_assignee_filter_with_unassigned(self, app, seed_data):
        with app.app_context():
            ctx = _ctx(seed_data["alice_id"])
            results = search_service.search_tasks(
                ctx, "", filters={"assignee_ids": [seed_data["bob_id"]]}
            )
            assert _task_ids(results) == [seed_data["login_task_id"]]

            results = search_service.search_tasks(
                ctx, "", filters={"assignee_ids": [None]}
            )
            assert _task_ids(results) == [seed_data["notes_task_id"]]

            results = search_service.search_tasks(
                ctx, "", filters={"assignee_ids": [None, seed_data["bob_id"]]}
            )
            assert set(_task_ids(results)) == {
                seed_data["login_task_id"], seed_data["notes_task_id"]
            }

    def test_tag_filter_is_overlap(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "",
                filters={"tags": ["auth", "docs"]},
            )
            assert set(_task_ids(results)) == {
                seed_data["login_task_id"],
                seed_data["notes_task_id"],
                seed_data["ranking_task_id"],
            }
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "", filters={"tags": ["bug"]}
            )
            assert _task_ids(results) == [seed_data["login_task_id"]]

    def test_tag_filter_is_exact(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "", filters={"tags": ["au"]}
            )
            assert results == []

    def test_tag_filter_matches_non_ascii_and_quoted_tags(self, app, seed_data):
        with app.app_context():
            cafe = _make_task(
                seed_data["backlog_id"], seed_data["workspace_id"],
                seed_data["alice_id"], "Order beans", tags=["café"],
            )
            quoted = _make_task(
                seed_data["backlog_id"], seed_data["workspace_id"],
                seed_data["alice_id"], "Greeting copy", tags=['say "hi"'],
            )
            db.session.commit()
            ctx = _ctx(seed_data["alice_id"])

            results = search_service.search_tasks(ctx, "", TaskSearchFilters(tags=["café"]))
            assert _task_ids(results) == [cafe.id]
            results = search_service.search_tasks(ctx, "", TaskSearchFilters(tags=['say "hi"']))
            assert _task_ids(results) == [quoted.id]

    def test_result_building_failure_raises_search_error(self, app, seed_data, monkeypatch):
        with app.app_context():
            monkeypatch.setattr(search_service, "_task_result", _boom)
            with pytest.raises(SearchError):
                search_service.search_tasks(_ctx(seed_data["alice_id"]), "login")

    def test_due_date_range(self, app, seed_data):
        with app.app_context():
            ctx = _ctx(seed_data["alice_id"])
            results = search_service.search_tasks(ctx, "", filters={
                "due_date_from": date(2026, 10, 1),
                "due_date_to": date(2026, 11, 30),
            })
            assert _task_ids(results) == [seed_data["login_task_id"]]

    def test_reversed_due_date_range_is_empty(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(_ctx(seed_data["alice_id"]), "", filters={
                "due_date_from": date(2026, 12, 31),
                "due_date_to": date(2026, 1, 1),
            })
            assert results == []

    def test_section_filter(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "",
                filters={"section_ids": [seed_data["doing_id"]]},
            )
            assert _task_ids(results) == [seed_data["ranking_task_id"]]

    def test_foreign_workspace_filter_returns_empty(self, app, seed_data):
        with app.app_context():
            results = search_service.search_tasks(
                _ctx(seed_data["alice_id"]), "",
                filters={"workspace_id": seed_data["other_workspace_id"]},
            )
            assert results == []

    def test_unusable_query_returns_empty(self, app, seed_data):
        with app.app_context():
            assert search_service.search_tasks(_ctx(seed_data["alice_id"]), "!!!") == []


# ─── Suggestions ───────────────────────────────────────────

class TestSuggestions:

    def test_suggests_task_titles(self, app, seed_data):
        with app.app_context():
            results = search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "log")
            titles = {s.suggestion: s for s in results}
            assert "Fix login bug" in titles
            assert titles["Fix login bug"].suggestion_type == "task"
            assert "Fix login bug in the vault" not in titles

    def test_suggests_tags_with_counts(self, app, seed_data):
        with app.app_context():
            results = search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "aut")
            auth = next(s for s in results if s.suggestion == "auth")
            assert auth.suggestion_type == "tag"
            assert auth.match_count == 2

    def test_case_insensitive_and_sources(self, app, seed_data):
        with app.app_context():
            results = search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "PROG")
            assert [(s.suggestion, s.suggestion_type) for s in results] == [("In Progress", "section")]

    def test_same_text_from_several_sources_is_merged(self, app, seed_data):
        with app.app_context():
            _make_task(
                seed_data["backlog_id"], seed_data["workspace_id"],
                seed_data["alice_id"], "Backlog",
            )
            db.session.commit()
            results = search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "backl")
            assert len(results) == 1
            assert results[0].suggestion == "Backlog"
            assert results[0].match_count == 2
            assert results[0].suggestion_type == "section"

    def test_ordered_by_count_and_limited(self, app, seed_data):
        with app.app_context():
            results = search_service.get_search_suggestions(
                _ctx(seed_data["alice_id"]), "a", limit=2
            )
            assert len(results) == 2
            counts = [s.match_count for s in results]
            assert counts == sorted(counts, reverse=True)

    def test_like_wildcards_are_literal(self, app, seed_data):
        with app.app_context():
            assert search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "%") == []
            assert search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "_") == []

    def test_blank_partial(self, app, seed_data):
        with app.app_context():
            assert search_service.get_search_suggestions(_ctx(seed_data["alice_id"]), "  ") == []

    def test_non_ascii_matching_is_case_insensitive(self, app, seed_data):
        with app.app_context():
            _make_task(
                seed_data["backlog_id"], seed_data["workspace_id"],
                seed_data["alice_id"], "Équipe onboarding", tags=["café"],
            )
            db.session.commit()
            ctx = _ctx(seed_data["alice_id"])

            results = search_service.get_search_suggestions(ctx, "équ")
            assert [(s.suggestion, s.suggestion_type) for s in results] == [
                ("Équipe onboarding", "task"),
            ]
            results = search_service.get_search_suggestions(ctx, "CAFÉ")
            assert [(s.suggestion, s.suggestion_type) for s in results] == [("café", "tag")]


# ─── Stats, metrics, rebuild ───────────────────────────────

class TestStatsAndMaintenance:

    def test_stats_counts_scope(self, app, seed_data):
        with app.app_context():
            stats = search_service.get_search_stats(_ctx(seed_data["alice_id"]))
            assert stats.workspace_count == 1
            assert stats.section_count == 2
            assert stats.task_count == 3
            assert stats.total_indexed_entities == 6
            assert stats.search_coverage_percentage == 100.0

    def test_stats_with_nothing_indexed_is_full_coverage(self, app, seed_data):
        with app.app_context():
            stats = search_service.get_search_stats(RequestContext())
            assert stats.total_indexed_entities == 0
            assert stats.search_coverage_percentage == 100.0

    def test_stats_partial_coverage(self, app, seed_data):
        with app.app_context():
            db.session.execute(
                Task.__table__.update()
                .where(Task.__table__.c.id == seed_data["notes_task_id"])
                .values(search_vector=None)
            )
            db.session.commit()
            stats = search_service.get_search_stats(_ctx(seed_data["alice_id"]))
            assert stats.total_indexed_entities == 5
            assert stats.search_coverage_percentage == pytest.approx(83.33)

    def test_performance_metrics(self, app, seed_data):
        with app.app_context():
            metrics = {
                m.metric_name: m.metric_value
                for m in search_service.get_search_performance_metrics(_ctx(seed_data["alice_id"]))
            }
            assert metrics["avg_task_vector_size"] > 0
            assert metrics["index_postings"] > 0
            assert metrics["total_searchable_entities"] == 6
            # auth, bug, docs, search
            assert metrics["unique_tags_count"] == 4
            assert metrics["tasks_with_tags_percentage"] == 100.0

    def test_performance_metrics_empty_scope(self, app, seed_data):
        with app.app_context():
            metrics = {
                m.metric_name: m.metric_value
                for m in search_service.get_search_performance_metrics(RequestContext())
            }
            assert metrics["tasks_with_tags_percentage"] == 0.0
            assert metrics["total_searchable_entities"] == 0

    def test_stats_and_metrics_failures_raise_search_error(self, app, seed_data, monkeypatch):
        with app.app_context():
            monkeypatch.setattr(search_service, "_entity_counts", _boom)
            ctx = _ctx(seed_data["alice_id"])
            with pytest.raises(SearchError):
                search_service.get_search_stats(ctx)
            with pytest.raises(SearchError):
                search_service.get_search_performance_metrics(ctx)

    def test_rebuild_restores_postings(self, app, seed_data):
        with app.app_context():
            SearchPosting.query.delete()
            db.session.commit()
            assert search_service.search_all(_ctx(seed_data["alice_id"]), "login") == []

            counts = search_service.rebuild_search_vectors()
            db.session.commit()
            assert counts == {"workspace": 2, "section": 3, "task": 4}
            results = search_service.search_all(_ctx(seed_data["alice_id"]), "login")
            assert seed_data["login_task_id"] in _ids(results)

    def test_rebuild_rejects_unknown_type(self, app, seed_data):
        with app.app_context():
            with pytest.raises(ValueError, match="Invalid entity type"):
                search_service.rebuild_search_vectors("comment")
