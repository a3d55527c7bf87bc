"""Tests for rollup_service: period math, summary counters, idempotent
aggregation and retention."""

from datetime import datetime, timedelta, timezone

import pytest

from taskgrid.extensions import db
from taskgrid.models.activity import EventCategoryStats, UserActivitySummary
from taskgrid.models.event import Event
from taskgrid.services import rollup_service

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
DAY = datetime(2026, 10, 16)


# ─── Helpers ───────────────────────────────────────────────

def _make_event(created_at, user_id, workspace_id, event_type="updated",
                entity_type="task", category="user_action", severity="info",
                entity_id=None, new_values=None):
    event = Event(
        user_id=user_id,
        workspace_id=workspace_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        new_values=new_values,
        category=category,
        severity=severity,
        source="web",
        created_at=created_at,
    )
    db.session.add(event)
    return event


def _seed_day(seed_data):
    """A day of alice's work in the shared workspace plus one sign-in."""
    alice, ws = seed_data["alice_id"], seed_data["workspace_id"]
    _make_event(DAY.replace(hour=9), alice, ws, "created", entity_id="t1")
    _make_event(DAY.replace(hour=9, minute=10), alice, ws, "created", entity_id="t2")
    _make_event(DAY.replace(hour=9, minute=30), alice, ws, "completed", entity_id="t1",
                new_values={"status": "completed"})
    _make_event(DAY.replace(hour=11), alice, ws, "updated", entity_id="t2")
    _make_event(DAY.replace(hour=12), alice, ws, "created", entity_type="section", entity_id="s1")
    _make_event(DAY.replace(hour=14, minute=10), alice, ws, "search_performed",
                entity_type="workspace", entity_id=ws)
    _make_event(DAY.replace(hour=8), alice, None, "login", entity_type="session",
                category="security")
    # Bob, and a different day
    _make_event(DAY.replace(hour=10), seed_data["bob_id"], ws, "created", entity_id="t3")
    _make_event(DAY - timedelta(days=1), alice, ws, "created", entity_id="t9")
    db.session.commit()


# ─── Periods ───────────────────────────────────────────────

class TestPeriodBounds:

    def test_hour(self):
        start, end = rollup_service.period_bounds("hour", datetime(2026, 10, 16, 9, 42, 7))
        assert start == datetime(2026, 10, 16, 9)
        assert end == datetime(2026, 10, 16, 10)

    def test_day(self):
        start, end = rollup_service.period_bounds("day", datetime(2026, 10, 16, 23, 59))
        assert (start, end) == (datetime(2026, 10, 16), datetime(2026, 10, 17))

    def test_week_starts_monday(self):
        # 2026-10-18 is a Sunday
        start, end = rollup_service.period_bounds("week", datetime(2026, 10, 18, 8))
        assert start == datetime(2026, 10, 12)
        assert end == datetime(2026, 10, 19)

    def test_month_rolls_over_year(self):
        start, end = rollup_service.period_bounds("month", datetime(2026, 12, 31, 18))
        assert (start, end) == (datetime(2026, 12, 1), datetime(2027, 1, 1))

    def test_aware_input_is_converted_to_utc(self):
        moment = datetime(2026, 10, 17, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        start, _end = rollup_service.period_bounds("day", moment)
        assert start == datetime(2026, 10, 16)

    def test_invalid_period(self):
        with pytest.raises(ValueError, match="Invalid period type"):
            rollup_service.period_bounds("fortnight", NOW)


# ─── Computation ───────────────────────────────────────────

class TestComputeUserActivity:

    def test_counters(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            rows = rollup_service.compute_user_activity(
                "day", DAY, user_id=seed_data["alice_id"]
            )
            by_workspace = {r.workspace_id: r for r in rows}
            assert set(by_workspace) == {seed_data["workspace_id"], None}

            work = by_workspace[seed_data["workspace_id"]]
            assert work.total_events == 6
            assert work.tasks_created == 2
            assert work.tasks_completed == 1
            assert work.tasks_updated == 1
            assert work.sections_created == 1
            assert work.searches_performed == 1
            assert work.logins == 0
            assert work.active_minutes == 310
            assert work.most_active_hour == 9
            assert work.last_activity_at == DAY.replace(hour=14, minute=10)
            assert work.period_start == DAY
            assert work.period_end == DAY + timedelta(days=1)

            assert by_workspace[None].logins == 1
            assert by_workspace[None].active_minutes == 1

    def test_compute_does_not_persist(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            rollup_service.compute_user_activity("day", DAY)
            rollup_service.compute_event_category_stats("day", DAY)
            db.session.commit()
            assert UserActivitySummary.query.count() == 0
            assert EventCategoryStats.query.count() == 0

    def test_archived_events_are_ignored(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            Event.query.filter_by(user_id=seed_data["bob_id"]).update(
                {Event.is_deleted: True}, synchronize_session=False
            )
            db.session.commit()
            rows = rollup_service.compute_user_activity("day", DAY)
            assert seed_data["bob_id"] not in {r.user_id for r in rows}

    def test_category_stats(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            rows = rollup_service.compute_event_category_stats(
                "day", DAY, workspace_id=seed_data["workspace_id"]
            )
            created = next(
                r for r in rows
                if (r.category, r.event_type, r.entity_type) == ("user_action", "created", "task")
            )
            assert created.event_count == 3
            assert created.unique_users == 2
            assert created.unique_entities == 3
            assert all(r.workspace_id == seed_data["workspace_id"] for r in rows)


# ─── Aggregation ───────────────────────────────────────────

class TestAggregate:

    def test_user_activity_upsert_is_idempotent(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            assert rollup_service.aggregate_user_activity("day", DAY) == 3
            db.session.commit()
            assert rollup_service.aggregate_user_activity("day", DAY) == 3
            db.session.commit()
            assert UserActivitySummary.query.count() == 3

    def test_upsert_refreshes_counts(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            rollup_service.aggregate_user_activity("day", DAY)
            db.session.commit()

            _make_event(DAY.replace(hour=16), seed_data["alice_id"], None, "login",
                        entity_type="session", category="security")
            db.session.commit()
            rollup_service.aggregate_user_activity("day", DAY)
            db.session.commit()

            row = UserActivitySummary.query.filter(
                UserActivitySummary.user_id == seed_data["alice_id"],
                UserActivitySummary.workspace_id.is_(None),
            ).one()
            assert row.logins == 2
            assert row.total_events == 2

    def test_category_stats_upsert(self, app, seed_data):
        with app.app_context():
            _seed_day(seed_data)
            first = rollup_service.aggregate_event_category_stats("day", DAY)
            db.session.commit()
            second = rollup_service.aggregate_event_category_stats("day", DAY)
            db.session.commit()
            assert first == second
            assert EventCategoryStats.query.count() == first


# ─── Retention ─────────────────────────────────────────────

class TestRetention:

    def test_archive_keeps_critical_security_events(self, app, seed_data):
        with app.app_context():
            alice, ws = seed_data["alice_id"], seed_data["workspace_id"]
            old = NOW - timedelta(days=400)
            _make_event(old, alice, ws)
            _make_event(old, alice, None, "login_failed", entity_type="session",
                        category="security", severity="warning")
            _make_event(old, alice, None, "suspicious_activity", entity_type="session",
                        category="security", severity="critical")
            _make_event(NOW - timedelta(days=3), alice, ws)
            db.session.commit()

            count = rollup_service.archive_old_events(older_than_days=365, now=NOW)
            db.session.commit()
            assert count == 2
            assert Event.query.filter_by(is_deleted=True).count() == 2
            assert Event.query.filter_by(severity="critical", is_deleted=False).count() == 1

            count = rollup_service.archive_old_events(
                older_than_days=365, keep_critical=False, now=NOW
            )
            db.session.commit()
            assert count == 1
            assert Event.query.filter_by(is_deleted=False).count() == 1

    def test_archive_uses_configured_retention(self, app, seed_data):
        with app.app_context():
            days = app.config["EVENT_RETENTION_DAYS"]
            _make_event(NOW - timedelta(days=days + 1), seed_data["alice_id"], None)
            _make_event(NOW - timedelta(days=days - 1), seed_data["alice_id"], None)
            db.session.commit()
            assert rollup_service.archive_old_events(now=NOW) == 1

    def test_cleanup_removes_only_old_hourly_rows(self, app, seed_data):
        with app.app_context():
            alice = seed_data["alice_id"]
            old = datetime(2026, 1, 5, 10)
            recent = datetime(2026, 10, 17, 10)
            for period_type, start in [("hour", old), ("hour", recent), ("day", old)]:
                db.session.add(UserActivitySummary(
                    user_id=alice,
                    period_type=period_type,
                    period_start=start,
                    period_end=start + timedelta(hours=1),
                ))
            db.session.commit()

            removed = rollup_service.cleanup_old_activity_summaries(older_than_days=90, now=NOW)
            db.session.commit()
            assert removed == 1
            remaining = {(r.period_type, r.period_start) for r in UserActivitySummary.query}
            assert remaining == {("hour", recent), ("day", old)}
