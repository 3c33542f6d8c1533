"""
Auth Blueprint — JWT authentication endpoints.

Endpoints:
  POST /api/v1/auth/register    — Email + password → user + access token
  POST /api/v1/auth/login       — Email + password → access token
  GET  /api/v1/auth/me          — Current user profile and team memberships
"""

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id
from app.blueprints import register_error_handlers
from app.services import team_service
from app.services.jwt_service import generate_access_token
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Create an account.

    Body: { "email": "...", "password": "...", "name": "..." }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("email") or not data.get("password"):
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = team_service.register_user(data["email"], data["password"], data.get("name"))
    err = db_commit_or_error()
    if err:
        return err

    tokens = generate_access_token(user.id, user.email)
    return jsonify({**tokens, "user": user.to_dict()}), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("email") or not data.get("password"):
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = team_service.authenticate(data["email"], data["password"])
    err = db_commit_or_error()
    if err:
        return err

    tokens = generate_access_token(user.id, user.email)
    return jsonify({**tokens, "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    user_id = get_current_user_id()
    if user_id is None:
        return api_error(E.UNAUTHORIZED, "Authentication required")

    user = team_service.get_user(user_id)
    teams = team_service.list_teams_for_user(user.id)
    memberships = {m.team_id: m.role for m in user.memberships}
    return jsonify({
        "user": user.to_dict(),
        "teams": [{**t.to_dict(), "role": memberships.get(t.id)} for t in teams],
    }), 200
