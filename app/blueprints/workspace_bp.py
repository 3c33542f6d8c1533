"""
Workspace blueprint.

Endpoints:
    /api/v1/teams/<tid>/workspaces            GET (search, sort_by, direction), POST
    /api/v1/workspaces/validate               POST
    /api/v1/workspaces/<wid>                  GET, PUT, DELETE
    /api/v1/workspaces/<wid>/stats            GET
    /api/v1/workspaces/<wid>/workflow-mode    PUT   {"enabled": bool}
    /api/v1/workspaces/<wid>/memory           POST  {"entry": ...}
"""

from flask import Blueprint, jsonify, request

from app.auth import get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.services import team_service, workspace_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

workspace_bp = Blueprint("workspace", __name__, url_prefix="/api/v1")
register_error_handlers(workspace_bp)


@workspace_bp.route("/teams/<int:tid>/workspaces", methods=["GET"])
def list_workspaces(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    workspaces = workspace_service.list_workspaces(
        tid,
        search=request.args.get("search"),
        sort_by=request.args.get("sort_by", "name"),
        direction=request.args.get("direction", "asc"),
    )
    return jsonify({
        "items": [w.to_dict(include_counts=True) for w in workspaces],
        "total": len(workspaces),
    })


@workspace_bp.route("/teams/<int:tid>/workspaces", methods=["POST"])
def create_workspace(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    data = request.get_json(silent=True) or {}
    workspace = workspace_service.create_workspace(tid, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(workspace.to_dict()), 201


@workspace_bp.route("/workspaces/validate", methods=["POST"])
def validate_workspace():
    data = request.get_json(silent=True) or {}
    return jsonify(workspace_service.validate_workspace(data))


@workspace_bp.route("/workspaces/<int:wid>", methods=["GET"])
def get_workspace(wid):
    workspace = get_workspace_for_member(wid)
    return jsonify(workspace.to_dict(include_counts=True))


@workspace_bp.route("/workspaces/<int:wid>", methods=["PUT"])
def update_workspace(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    workspace_service.update_workspace(workspace, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(workspace.to_dict())


@workspace_bp.route("/workspaces/<int:wid>", methods=["DELETE"])
def delete_workspace(wid):
    workspace = get_workspace_for_member(wid)
    workspace_service.delete_workspace(workspace)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": wid})


@workspace_bp.route("/workspaces/<int:wid>/stats", methods=["GET"])
def workspace_stats(wid):
    workspace = get_workspace_for_member(wid)
    return jsonify(workspace_service.get_stats(workspace))


@workspace_bp.route("/workspaces/<int:wid>/workflow-mode", methods=["PUT"])
def set_workflow_mode(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "enabled is required")
    workspace_service.set_workflow_mode(workspace, data["enabled"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(workspace.to_dict())


@workspace_bp.route("/workspaces/<int:wid>/memory", methods=["POST"])
def add_memory(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    workspace_service.add_memory(workspace, data.get("entry"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"ai_memory": workspace.ai_memory}), 201
