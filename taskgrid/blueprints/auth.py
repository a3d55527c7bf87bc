"""Auth blueprint — /auth/*

JSON login / logout. Every attempt is recorded as a security event:
login, login_failed (unknown email, bad password or deactivated account)
and logout.
"""

from flask import Blueprint, g, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from taskgrid.extensions import db, limiter
from taskgrid.middleware.request_context import build_request_context
from taskgrid.models.user import User
from taskgrid.services import event_service

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""
    return email, password, bool(data.get("remember"))


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Email + password login."""
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    email, password, remember = _credentials()
    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()

    reason = None
    if user is None or not check_password_hash(user.password_hash, password):
        reason = "invalid_credentials"
    elif not user.is_active:
        reason = "account_deactivated"

    if reason is not None:
        event_service.log_auth_event(
            g.request_context,
            "login_failed",
            user_id=user.id if user else None,
            method="password",
            reason=reason,
        )
        db.session.commit()
        if reason == "account_deactivated":
            return jsonify({"error": "Your account has been deactivated."}), 403
        return jsonify({"error": "Invalid email or password."}), 401

    login_user(user, remember=remember)
    g.request_context = build_request_context(user)
    event_service.log_auth_event(g.request_context, "login", method="password")
    db.session.commit()

    return jsonify({"user": user.to_dict()})


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    event_service.log_auth_event(g.request_context, "logout")
    db.session.commit()
    logout_user()
    return jsonify({"ok": True})
