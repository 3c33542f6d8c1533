"""
Work item blueprint.

Endpoints:
    /api/v1/workspaces/<wid>/work-items              GET (filters, search, sort), POST
    /api/v1/workspaces/<wid>/work-items/stats        GET
    /api/v1/work-items/validate                      POST
    /api/v1/work-items/<id>                          GET, PUT, DELETE
    /api/v1/work-items/<id>/duplicate                POST
    /api/v1/work-items/<id>/status                   GET   (timeline breakdown)
    /api/v1/work-items/<id>/children                 GET
    /api/v1/work-items/<id>/workflow-stage           PUT
    /api/v1/work-items/<id>/stage-readiness          GET
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.models.work_item import WorkItem
from app.models.workspace import Workspace
from app.models import db
from app.services import work_item_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

work_item_bp = Blueprint("work_item", __name__, url_prefix="/api/v1")
register_error_handlers(work_item_bp)

FILTER_PARAMS = ("status", "priority", "health", "type", "tag", "workflow_stage", "department_id")


def _get_item(item_id) -> WorkItem:
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    return item


# ═══════════════════════════════════════════════════════════════════════════
#  COLLECTION
# ═══════════════════════════════════════════════════════════════════════════

@work_item_bp.route("/workspaces/<int:wid>/work-items", methods=["GET"])
def list_work_items(wid):
    get_workspace_for_member(wid)
    filters = {p: request.args.get(p) for p in FILTER_PARAMS if request.args.get(p)}
    items = work_item_service.list_work_items(
        wid,
        filters=filters,
        search=request.args.get("search"),
        sort_by=request.args.get("sort_by", "created"),
        direction=request.args.get("direction", "desc"),
    )
    include_timeline = request.args.get("include_timeline") == "true"
    return jsonify({
        "items": [i.to_dict(include_timeline=include_timeline) for i in items],
        "total": len(items),
    })


@work_item_bp.route("/workspaces/<int:wid>/work-items", methods=["POST"])
def create_work_item(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    item = work_item_service.create_work_item(workspace, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_timeline=True)), 201


@work_item_bp.route("/workspaces/<int:wid>/work-items/stats", methods=["GET"])
def work_item_stats(wid):
    get_workspace_for_member(wid)
    items = WorkItem.query.filter_by(workspace_id=wid).all()
    stats = work_item_service.get_stats(items)
    stats["with_active_blockers"] = [i.id for i in work_item_service.with_active_blockers(items)]
    stats["overdue"] = [i.id for i in work_item_service.overdue(items)]
    stats["workflow"] = work_item_service.workflow_stats(items)
    return jsonify(stats)


@work_item_bp.route("/work-items/validate", methods=["POST"])
def validate_work_item():
    data = request.get_json(silent=True) or {}
    return jsonify(work_item_service.validate_work_item(data))


# ═══════════════════════════════════════════════════════════════════════════
#  SINGLE ITEM
# ═══════════════════════════════════════════════════════════════════════════

@work_item_bp.route("/work-items/<int:item_id>", methods=["GET"])
def get_work_item(item_id):
    item = _get_item(item_id)
    return jsonify(item.to_dict(include_timeline=True))


@work_item_bp.route("/work-items/<int:item_id>", methods=["PUT"])
def update_work_item(item_id):
    item = _get_item(item_id)
    data = request.get_json(silent=True) or {}
    work_item_service.update_work_item(item, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_timeline=True))


@work_item_bp.route("/work-items/<int:item_id>", methods=["DELETE"])
def delete_work_item(item_id):
    item = _get_item(item_id)
    work_item_service.delete_work_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": item_id})


@work_item_bp.route("/work-items/<int:item_id>/duplicate", methods=["POST"])
def duplicate_work_item(item_id):
    item = _get_item(item_id)
    copy = work_item_service.duplicate_work_item(item, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict(include_timeline=True)), 201


@work_item_bp.route("/work-items/<int:item_id>/status", methods=["GET"])
def work_item_status(item_id):
    item = _get_item(item_id)
    return jsonify(work_item_service.status_breakdown(item))


@work_item_bp.route("/work-items/<int:item_id>/children", methods=["GET"])
def work_item_children(item_id):
    item = _get_item(item_id)
    children = work_item_service.list_children(item)
    return jsonify({
        "parent_id": item.id,
        "is_epic": item.is_epic,
        "items": [c.to_dict() for c in children],
        "total": len(children),
    })


# ═══════════════════════════════════════════════════════════════════════════
#  WORKFLOW
# ═══════════════════════════════════════════════════════════════════════════

@work_item_bp.route("/work-items/<int:item_id>/workflow-stage", methods=["PUT"])
def update_workflow_stage(item_id):
    item = _get_item(item_id)
    data = request.get_json(silent=True) or {}
    if not data.get("stage"):
        return api_error(E.VALIDATION_REQUIRED, "stage is required")
    work_item_service.update_workflow_stage(
        item, data["stage"], notes=data.get("notes"), user_id=get_current_user_id(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@work_item_bp.route("/work-items/<int:item_id>/stage-readiness", methods=["GET"])
def stage_readiness(item_id):
    item = _get_item(item_id)
    workspace = db.session.get(Workspace, item.workspace_id)
    return jsonify(work_item_service.check_stage_readiness(item, workspace.workflow_config))
