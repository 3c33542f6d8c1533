"""
Dependency blueprint — connections, dependency analysis and importance scores.

Endpoints:
    CONNECTION  /api/v1/workspaces/<wid>/connections          GET (status), POST
                /api/v1/work-items/<id>/connections           GET
                /api/v1/connections/<cid>/status              PUT
                /api/v1/connections/<cid>                     DELETE
    ANALYSIS    /api/v1/dependencies/analyze                  POST  {"workspace_id"}
                /api/v1/workspaces/<wid>/dependencies/graph   GET
    IMPORTANCE  /api/v1/workspaces/<wid>/importance           POST  (recalculate)
                /api/v1/workspaces/<wid>/importance/top       GET   (limit)
                /api/v1/work-items/<id>/importance            GET
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.core.exceptions import NotFoundError
from app.models import db
from app.models.work_item import WorkItemConnection
from app.services import (
    connection_service,
    dependency_service,
    importance_service,
    work_item_service,
)
from app.services.importance_service import DEFAULT_WEIGHTS
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

dependency_bp = Blueprint("dependency", __name__, url_prefix="/api/v1")
register_error_handlers(dependency_bp)


def _get_connection(cid) -> WorkItemConnection:
    connection = db.session.get(WorkItemConnection, cid)
    if connection is None:
        raise NotFoundError("Connection", cid)
    get_workspace_for_member(connection.workspace_id)
    return connection


# ═══════════════════════════════════════════════════════════════════════════
#  CONNECTIONS
# ═══════════════════════════════════════════════════════════════════════════

@dependency_bp.route("/workspaces/<int:wid>/connections", methods=["GET"])
def list_connections(wid):
    get_workspace_for_member(wid)
    status = request.args.get("status", "active")
    connections = connection_service.list_connections(wid, None if status == "all" else status)
    return jsonify({"items": [c.to_dict() for c in connections], "total": len(connections)})


@dependency_bp.route("/workspaces/<int:wid>/connections", methods=["POST"])
def create_connection(wid):
    get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    connection = connection_service.create_connection(wid, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(connection.to_dict()), 201


@dependency_bp.route("/work-items/<int:item_id>/connections", methods=["GET"])
def list_item_connections(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    connections = connection_service.list_item_connections(item.id)
    return jsonify({
        "outgoing": [c.to_dict() for c in connections if c.source_work_item_id == item.id],
        "incoming": [c.to_dict() for c in connections if c.target_work_item_id == item.id],
        "total": len(connections),
    })


@dependency_bp.route("/connections/<int:cid>/status", methods=["PUT"])
def update_connection_status(cid):
    connection = _get_connection(cid)
    data = request.get_json(silent=True) or {}
    connection_service.update_connection_status(connection, data.get("status"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(connection.to_dict())


@dependency_bp.route("/connections/<int:cid>", methods=["DELETE"])
def delete_connection(cid):
    connection = _get_connection(cid)
    connection_service.delete_connection(connection)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": cid})


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS
# ═══════════════════════════════════════════════════════════════════════════

@dependency_bp.route("/dependencies/analyze", methods=["POST"])
def analyze_dependencies():
    """Cycle check, CPM critical path, bottlenecks and health score."""
    data = request.get_json(silent=True) or {}
    workspace_id = data.get("workspace_id")
    if not workspace_id:
        return api_error(E.VALIDATION_REQUIRED, "workspace_id is required")
    workspace = get_workspace_for_member(workspace_id)

    result = dependency_service.analyze(workspace.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result)


@dependency_bp.route("/workspaces/<int:wid>/dependencies/graph", methods=["GET"])
def dependency_graph(wid):
    get_workspace_for_member(wid)
    report = dependency_service.graph_report(wid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(report)


# ═══════════════════════════════════════════════════════════════════════════
#  IMPORTANCE
# ═══════════════════════════════════════════════════════════════════════════

@dependency_bp.route("/workspaces/<int:wid>/importance", methods=["POST"])
def calculate_importance(wid):
    get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    weights = data.get("weights")
    if weights is not None:
        unknown = set(weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            return api_error(E.VALIDATION_INVALID,
                             f"Unknown weight keys: {', '.join(sorted(unknown))}")
        weights = {**DEFAULT_WEIGHTS, **weights}

    scores = importance_service.calculate_workspace_importance(wid, weights)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"items": scores, "total": len(scores)})


@dependency_bp.route("/workspaces/<int:wid>/importance/top", methods=["GET"])
def top_features(wid):
    get_workspace_for_member(wid)
    limit = request.args.get("limit", 10, type=int)
    return jsonify({"items": importance_service.get_top_features(wid, limit=limit)})


@dependency_bp.route("/work-items/<int:item_id>/importance", methods=["GET"])
def work_item_importance(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    score = importance_service.get_feature_score(item.id)
    if score is None:
        return api_error(E.NOT_FOUND, "Importance score not calculated yet")
    return jsonify(score)
