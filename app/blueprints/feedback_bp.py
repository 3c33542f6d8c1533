"""
Feedback blueprint — work item feedback intake, triage and conversion.

Endpoints:
    /api/v1/work-items/<id>/feedback          GET, POST
    /api/v1/teams/<tid>/feedback              GET (workspace_id, status, source, priority)
    /api/v1/teams/<tid>/feedback/stats        GET (workspace_id)
    /api/v1/feedback/<fid>                    GET, PUT, DELETE
    /api/v1/feedback/<fid>/triage             POST  {"decision", "reason"}
    /api/v1/feedback/<fid>/convert            POST  {"work_item_type", "work_item_name"}
"""

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, require_team_member
from app.blueprints import register_error_handlers
from app.models.team import User
from app.models import db
from app.services import feedback_service, team_service, work_item_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

feedback_bp = Blueprint("feedback", __name__, url_prefix="/api/v1")
register_error_handlers(feedback_bp)


def _get_feedback(fid):
    feedback = feedback_service.get_feedback(fid)
    require_team_member(feedback.team_id)
    return feedback


@feedback_bp.route("/work-items/<int:item_id>/feedback", methods=["GET"])
def list_work_item_feedback(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    items = feedback_service.list_feedback(
        item.team_id, work_item_id=item.id,
        status=request.args.get("status"),
        source=request.args.get("source"),
        priority=request.args.get("priority"),
    )
    return jsonify({"items": [f.to_dict() for f in items], "total": len(items)})


@feedback_bp.route("/work-items/<int:item_id>/feedback", methods=["POST"])
def create_feedback(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    data = request.get_json(silent=True) or {}

    notify_email = None
    if data.get("notify_owner") and item.created_by:
        owner = db.session.get(User, item.created_by)
        notify_email = owner.email if owner else None

    feedback = feedback_service.create_feedback(item, data, notify_email=notify_email)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(feedback.to_dict()), 201


@feedback_bp.route("/teams/<int:tid>/feedback", methods=["GET"])
def list_team_feedback(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    items = feedback_service.list_feedback(
        tid,
        workspace_id=request.args.get("workspace_id", type=int),
        status=request.args.get("status"),
        source=request.args.get("source"),
        priority=request.args.get("priority"),
    )
    return jsonify({"items": [f.to_dict() for f in items], "total": len(items)})


@feedback_bp.route("/teams/<int:tid>/feedback/stats", methods=["GET"])
def feedback_stats(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    return jsonify(feedback_service.get_stats(tid, request.args.get("workspace_id", type=int)))


@feedback_bp.route("/feedback/<int:fid>", methods=["GET"])
def get_feedback(fid):
    return jsonify(_get_feedback(fid).to_dict())


@feedback_bp.route("/feedback/<int:fid>", methods=["PUT"])
def update_feedback(fid):
    feedback = _get_feedback(fid)
    data = request.get_json(silent=True) or {}
    feedback_service.update_feedback(feedback, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(feedback.to_dict())


@feedback_bp.route("/feedback/<int:fid>", methods=["DELETE"])
def delete_feedback(fid):
    feedback = _get_feedback(fid)
    feedback_service.delete_feedback(feedback)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": fid})


@feedback_bp.route("/feedback/<int:fid>/triage", methods=["POST"])
def triage_feedback(fid):
    feedback = _get_feedback(fid)
    data = request.get_json(silent=True) or {}
    if not data.get("decision"):
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    feedback_service.triage(feedback, data["decision"], data.get("reason"),
                            user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(feedback.to_dict())


@feedback_bp.route("/feedback/<int:fid>/convert", methods=["POST"])
def convert_feedback(fid):
    feedback = _get_feedback(fid)
    data = request.get_json(silent=True) or {}
    feedback, work_item = feedback_service.convert_to_work_item(
        feedback, data, user_id=get_current_user_id(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"feedback": feedback.to_dict(), "work_item": work_item.to_dict()}), 201
