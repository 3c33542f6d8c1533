"""
Insight blueprints — team-internal insight management and the public surface.

Team endpoints (authenticated):
    /api/v1/teams/<tid>/insights              GET (workspace_id, status, sentiment, search), POST
    /api/v1/teams/<tid>/insights/stats        GET (workspace_id)
    /api/v1/insights/<iid>                    GET, PUT, DELETE

Public endpoints (no auth, rate limited):
    /api/v1/public/workspaces/<wid>/feedback  POST  — submit feedback as a new insight
    /api/v1/public/insights/<iid>             GET   — title, pain point and vote counts
    /api/v1/public/insights/<iid>/vote        POST  {"vote_type": "up"|"down", "email"}
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, require_team_member
from app.blueprints import register_error_handlers
from app.core.exceptions import PermissionDeniedError
from app.models import db
from app.models.workspace import Workspace
from app.services import insight_service, team_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

insight_bp = Blueprint("insight", __name__, url_prefix="/api/v1")
public_bp = Blueprint("public", __name__, url_prefix="/api/v1/public")
register_error_handlers(insight_bp)
register_error_handlers(public_bp)

PUBLIC_THANKS = "Thank you for your feedback!"


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def _get_insight(iid):
    insight = insight_service.get_insight(iid)
    require_team_member(insight.team_id)
    return insight


# ═══════════════════════════════════════════════════════════════════════════
#  TEAM INSIGHTS
# ═══════════════════════════════════════════════════════════════════════════

@insight_bp.route("/teams/<int:tid>/insights", methods=["GET"])
def list_insights(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    insights = insight_service.list_insights(
        tid,
        workspace_id=request.args.get("workspace_id", type=int),
        status=request.args.get("status"),
        sentiment=request.args.get("sentiment"),
        search=request.args.get("search"),
    )
    return jsonify({"items": [i.to_dict() for i in insights], "total": len(insights)})


@insight_bp.route("/teams/<int:tid>/insights", methods=["POST"])
def create_insight(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    data = request.get_json(silent=True) or {}
    insight = insight_service.create_insight(tid, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(insight.to_dict()), 201


@insight_bp.route("/teams/<int:tid>/insights/stats", methods=["GET"])
def insight_stats(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    return jsonify(insight_service.get_stats(tid, request.args.get("workspace_id", type=int)))


@insight_bp.route("/insights/<int:iid>", methods=["GET"])
def get_insight(iid):
    return jsonify(_get_insight(iid).to_dict())


@insight_bp.route("/insights/<int:iid>", methods=["PUT"])
def update_insight(iid):
    insight = _get_insight(iid)
    data = request.get_json(silent=True) or {}
    insight_service.update_insight(insight, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(insight.to_dict())


@insight_bp.route("/insights/<int:iid>", methods=["DELETE"])
def delete_insight(iid):
    insight = _get_insight(iid)
    insight_service.delete_insight(insight)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": iid})


# ═══════════════════════════════════════════════════════════════════════════
#  PUBLIC
# ═══════════════════════════════════════════════════════════════════════════

@public_bp.route("/workspaces/<int:wid>/feedback", methods=["POST"])
def submit_public_feedback(wid):
    data = request.get_json(silent=True) or {}
    insight = insight_service.submit_public_feedback(wid, data, _client_ip())
    if insight is None:
        return jsonify({"success": True, "message": PUBLIC_THANKS}), 201
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"success": True, "message": PUBLIC_THANKS, "id": insight.id}), 201


@public_bp.route("/insights/<int:iid>", methods=["GET"])
def get_public_insight(iid):
    insight = insight_service.get_insight(iid)
    workspace = db.session.get(Workspace, insight.workspace_id) if insight.workspace_id else None
    if not insight.public_share_enabled and not (workspace and workspace.public_feedback_enabled):
        raise PermissionDeniedError("This insight is not public")
    return jsonify({
        "id": insight.id,
        "title": insight.title,
        "pain_point": insight.pain_point,
        "sentiment": insight.sentiment,
        "upvote_count": insight.upvote_count,
        "downvote_count": insight.downvote_count,
    })


@public_bp.route("/insights/<int:iid>/vote", methods=["POST"])
def vote_insight(iid):
    data = request.get_json(silent=True) or {}
    if not data.get("vote_type"):
        return api_error(E.VALIDATION_REQUIRED, "vote_type is required")
    insight = insight_service.get_insight(iid)
    result = insight_service.vote(insight, data["vote_type"], _client_ip(), email=data.get("email"))
    err = db_commit_or_error()
    if err:
        return err
    result.update(upvote_count=insight.upvote_count, downvote_count=insight.downvote_count)
    return jsonify(result), 200
