"""
Timeline blueprint — MVP / SHORT / LONG breakdown of work items.

Endpoints:
    /api/v1/work-items/<id>/timeline                  GET (timeline, difficulty), POST
    /api/v1/work-items/<id>/timeline/stats            GET
    /api/v1/work-items/<id>/timeline/reorder          PUT   {"item_id", "new_index"}
    /api/v1/timeline-items/validate                   POST
    /api/v1/timeline-items/<tid>                      GET, PUT, DELETE
    /api/v1/timeline-items/<tid>/duplicate            POST
    /api/v1/timeline-items/<tid>/links                GET, POST
    /api/v1/timeline-items/<tid>/links/<target_id>    DELETE
"""

from flask import Blueprint, jsonify, request

from app.auth import require_team_member
from app.blueprints import register_error_handlers
from app.core.exceptions import NotFoundError
from app.models import db
from app.models.work_item import TimelineItem
from app.services import timeline_service, work_item_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

timeline_bp = Blueprint("timeline", __name__, url_prefix="/api/v1")
register_error_handlers(timeline_bp)


def _get_work_item(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    return item


def _get_timeline_item(tid) -> TimelineItem:
    item = db.session.get(TimelineItem, tid)
    if item is None:
        raise NotFoundError("Timeline item", tid)
    require_team_member(item.team_id)
    return item


# ── Per work item ────────────────────────────────────────────────────────────

@timeline_bp.route("/work-items/<int:item_id>/timeline", methods=["GET"])
def list_timeline_items(item_id):
    work_item = _get_work_item(item_id)
    items = timeline_service.list_items(
        work_item,
        timeline=request.args.get("timeline"),
        difficulty=request.args.get("difficulty"),
    )
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@timeline_bp.route("/work-items/<int:item_id>/timeline", methods=["POST"])
def add_timeline_item(item_id):
    work_item = _get_work_item(item_id)
    data = request.get_json(silent=True) or {}
    item = timeline_service.add_item(work_item, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


@timeline_bp.route("/work-items/<int:item_id>/timeline/stats", methods=["GET"])
def timeline_stats(item_id):
    work_item = _get_work_item(item_id)
    return jsonify(timeline_service.get_stats(work_item))


@timeline_bp.route("/work-items/<int:item_id>/timeline/reorder", methods=["PUT"])
def reorder_timeline(item_id):
    work_item = _get_work_item(item_id)
    data = request.get_json(silent=True) or {}
    if data.get("item_id") is None or data.get("new_index") is None:
        return api_error(E.VALIDATION_REQUIRED, "item_id and new_index are required")
    items = timeline_service.reorder(work_item, data["item_id"], data["new_index"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"items": [i.to_dict() for i in items]})


@timeline_bp.route("/timeline-items/validate", methods=["POST"])
def validate_timeline_item():
    data = request.get_json(silent=True) or {}
    return jsonify(timeline_service.validate_timeline_item(data))


# ── Single timeline item ─────────────────────────────────────────────────────

@timeline_bp.route("/timeline-items/<int:tid>", methods=["GET"])
def get_timeline_item(tid):
    item = _get_timeline_item(tid)
    return jsonify(item.to_dict())


@timeline_bp.route("/timeline-items/<int:tid>", methods=["PUT"])
def update_timeline_item(tid):
    item = _get_timeline_item(tid)
    data = request.get_json(silent=True) or {}
    timeline_service.update_item(item, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@timeline_bp.route("/timeline-items/<int:tid>", methods=["DELETE"])
def delete_timeline_item(tid):
    item = _get_timeline_item(tid)
    timeline_service.delete_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": tid})


@timeline_bp.route("/timeline-items/<int:tid>/duplicate", methods=["POST"])
def duplicate_timeline_item(tid):
    item = _get_timeline_item(tid)
    copy = timeline_service.duplicate_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict()), 201


# ── Links ────────────────────────────────────────────────────────────────────

@timeline_bp.route("/timeline-items/<int:tid>/links", methods=["GET"])
def list_links(tid):
    item = _get_timeline_item(tid)
    return jsonify({
        "outgoing": [link.to_dict() for link in item.outgoing_links],
        "incoming": [link.to_dict() for link in timeline_service.incoming_links(item)],
    })


@timeline_bp.route("/timeline-items/<int:tid>/links", methods=["POST"])
def create_link(tid):
    item = _get_timeline_item(tid)
    data = request.get_json(silent=True) or {}
    if data.get("target_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "target_id is required")
    link = timeline_service.create_link(
        item, data["target_id"],
        relationship_type=data.get("relationship_type", "relates_to"),
        reason=data.get("reason", ""),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 201


@timeline_bp.route("/timeline-items/<int:tid>/links/<int:target_id>", methods=["DELETE"])
def delete_link(tid, target_id):
    item = _get_timeline_item(tid)
    timeline_service.delete_link(item, target_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "source_id": tid, "target_id": target_id})
