import os
import logging

import click
from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from taskgrid.config import config_by_name
from taskgrid.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from taskgrid import models  # noqa: F401

    # --- Request context middleware ---
    from taskgrid.middleware.request_context import init_request_context_middleware
    init_request_context_middleware(app)

    # --- Register blueprints ---
    from taskgrid.blueprints.auth import auth_bp
    from taskgrid.blueprints.search import search_bp
    from taskgrid.blueprints.events import events_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(search_bp)
    app.register_blueprint(events_bp)

    # JSON login has no form page to carry a CSRF token
    csrf.exempt(auth_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        return jsonify({"service": "taskgrid", "ok": True})

    # --- Error handlers ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(500)
    def server_error(e):
        """Record unhandled exceptions as error events, then answer JSON."""
        from taskgrid.services import event_service

        db.session.rollback()
        ctx = getattr(g, "request_context", None)
        original = getattr(e, "original_exception", None)
        if ctx is not None and original is not None:
            event_service.log_exception(ctx, original)
            db.session.commit()
        return jsonify({"error": "Internal server error."}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Search responses carry user data
        response.headers.setdefault("Cache-Control", "no-store")
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--email", default="demo@taskgrid.local", help="Demo user email")
    @click.option("--password", default="demo1234", help="Demo user password")
    def seed_demo(email, password):
        """Create a demo user with a workspace, sections and tasks.

        Usage:
            flask seed-demo
            flask seed-demo --email me@example.com --password s3cret
        """
        from taskgrid.context import RequestContext
        from taskgrid.models.user import User
        from taskgrid.services import task_service

        # --- 1. Demo user ---
        user = User.query.filter_by(email=email).first()
        if user:
            click.echo(f"Demo user already exists: {email}")
        else:
            user = User(
                email=email,
                password_hash=generate_password_hash(password),
                name="Demo User",
            )
            db.session.add(user)
            db.session.flush()
            click.echo(f"Created demo user: {email}")

        ctx = RequestContext.for_user(user.id, source="system")

        # --- 2. Workspace ---
        workspace, ctx = task_service.create_workspace(
            ctx, "Product Launch", description="Everything needed to ship v1"
        )

        # --- 3. Sections ---
        backlog = task_service.create_section(ctx, workspace.id, "Backlog")
        doing = task_service.create_section(ctx, workspace.id, "In Progress")

        # --- 4. Tasks ---
        task_service.create_task(
            ctx, backlog.id, "Fix login bug",
            description="Users are logged out after a password reset",
            priority="high", tags=["auth", "bug"],
        )
        task_service.create_task(
            ctx, backlog.id, "Write release notes",
            description="Summarize the search and activity features",
            tags=["docs"],
        )
        task = task_service.create_task(
            ctx, doing.id, "Design search ranking",
            description="Titles outrank descriptions, tags rank lowest",
            priority="urgent", assigned_to_user_id=user.id, tags=["search"],
        )
        task_service.update_task(ctx, task.id, status="in_progress")

        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Demo data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  User:      {email} / {password}")
        click.echo(f"  Workspace: {workspace.name} (id: {workspace.id})")
        click.echo(f"  Sections:  {backlog.name}, {doing.name}")
        click.echo("=" * 60)

    @app.cli.command("rebuild-search-vectors")
    @click.option(
        "--entity-type",
        type=click.Choice(["all", "workspace", "section", "task"]),
        default="all",
        help="Which entities to reindex.",
    )
    def rebuild_search_vectors(entity_type):
        """Recompute search vectors and index postings from source columns."""
        from taskgrid.services.search_service import rebuild_search_vectors as rebuild

        counts = rebuild(entity_type)
        db.session.commit()
        for name, count in counts.items():
            click.echo(f"  {name}: {count} rebuilt")

    @app.cli.command("aggregate-activity")
    @click.option(
        "--period-type",
        type=click.Choice(["hour", "day", "week", "month"]),
        default="day",
    )
    @click.option(
        "--date",
        "period_date",
        type=click.DateTime(),
        default=None,
        help="Any moment inside the period (default: now, UTC).",
    )
    def aggregate_activity(period_type, period_date):
        """Rebuild user and category rollups for one period from raw events."""
        from taskgrid.services import rollup_service

        users = rollup_service.aggregate_user_activity(period_type, period_date)
        categories = rollup_service.aggregate_event_category_stats(period_type, period_date)
        db.session.commit()
        click.echo(f"  user summaries:  {users}")
        click.echo(f"  category stats:  {categories}")

    @app.cli.command("archive-events")
    @click.option("--older-than-days", type=int, default=None,
                  help="Default: EVENT_RETENTION_DAYS.")
    @click.option("--keep-critical/--include-critical", default=True,
                  help="Keep security events at error/critical severity.")
    def archive_events(older_than_days, keep_critical):
        """Soft-delete events past retention (only is_deleted changes)."""
        from taskgrid.services import rollup_service

        count = rollup_service.archive_old_events(older_than_days, keep_critical)
        db.session.commit()
        click.echo(f"  archived: {count}")

    @app.cli.command("cleanup-summaries")
    @click.option("--older-than-days", type=int, default=None,
                  help="Default: SUMMARY_RETENTION_DAYS.")
    def cleanup_summaries(older_than_days):
        """Delete hourly activity summaries past retention."""
        from taskgrid.services import rollup_service

        count = rollup_service.cleanup_old_activity_summaries(older_than_days)
        db.session.commit()
        click.echo(f"  removed: {count}")
