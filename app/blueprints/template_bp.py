"""
Template blueprint — workspace templates and template application.

Endpoints:
    /api/v1/teams/<tid>/templates                 GET (category), POST
    /api/v1/templates/<id>                        GET, PUT, DELETE
    /api/v1/workspaces/<wid>/apply-template       POST  {"template_id", "create_departments",
                                                         "create_work_items", "add_tags"}
"""

from flask import Blueprint, jsonify, request

from app.auth import (
    get_current_user_id,
    get_workspace_for_member,
    require_team_admin,
    require_team_member,
)
from app.blueprints import register_error_handlers
from app.services import team_service, template_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

template_bp = Blueprint("template", __name__, url_prefix="/api/v1")
register_error_handlers(template_bp)


def _get_template(template_id):
    template = template_service.get_template(template_id)
    if not template.is_system:
        require_team_member(template.team_id)
    return template


@template_bp.route("/teams/<int:tid>/templates", methods=["GET"])
def list_templates(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    templates = template_service.list_templates(tid, category=request.args.get("category"))
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)})


@template_bp.route("/teams/<int:tid>/templates", methods=["POST"])
def create_template(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    data = request.get_json(silent=True) or {}
    template = template_service.create_template(tid, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(template.to_dict()), 201


@template_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(_get_template(template_id).to_dict())


@template_bp.route("/templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    template = _get_template(template_id)
    data = request.get_json(silent=True) or {}
    template_service.update_template(template, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(template.to_dict())


@template_bp.route("/templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    template = _get_template(template_id)
    template_service.delete_template(template)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": template_id})


@template_bp.route("/workspaces/<int:wid>/apply-template", methods=["POST"])
def apply_template(wid):
    workspace = get_workspace_for_member(wid)
    require_team_admin(workspace.team_id, "apply templates")
    data = request.get_json(silent=True) or {}
    if not data.get("template_id"):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")

    template = template_service.get_template(data["template_id"])
    result = template_service.apply_template(
        template, workspace,
        user_id=get_current_user_id(),
        create_departments=bool(data.get("create_departments", True)),
        create_work_items=bool(data.get("create_work_items", True)),
        add_tags=bool(data.get("add_tags", True)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 201
