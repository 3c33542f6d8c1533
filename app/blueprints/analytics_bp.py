"""
Analytics blueprint — team dashboards.

Endpoints (all accept ?workspace_id=):
    /api/v1/teams/<tid>/analytics/overview
    /api/v1/teams/<tid>/analytics/dependencies
    /api/v1/teams/<tid>/analytics/alignment
    /api/v1/teams/<tid>/analytics/performance
"""

from flask import Blueprint, jsonify, request

from app.auth import get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.core.exceptions import ValidationError
from app.services import analytics_service, team_service

analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/v1")
register_error_handlers(analytics_bp)


def _scope(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    workspace_id = request.args.get("workspace_id", type=int)
    if workspace_id is not None:
        workspace = get_workspace_for_member(workspace_id)
        if workspace.team_id != tid:
            raise ValidationError("Workspace does not belong to this team")
    return workspace_id


@analytics_bp.route("/teams/<int:tid>/analytics/overview", methods=["GET"])
def overview(tid):
    return jsonify(analytics_service.overview(tid, _scope(tid)))


@analytics_bp.route("/teams/<int:tid>/analytics/dependencies", methods=["GET"])
def dependencies(tid):
    return jsonify(analytics_service.dependencies(tid, _scope(tid)))


@analytics_bp.route("/teams/<int:tid>/analytics/alignment", methods=["GET"])
def alignment(tid):
    return jsonify(analytics_service.alignment(tid, _scope(tid)))


@analytics_bp.route("/teams/<int:tid>/analytics/performance", methods=["GET"])
def performance(tid):
    return jsonify(analytics_service.performance(tid, _scope(tid)))
