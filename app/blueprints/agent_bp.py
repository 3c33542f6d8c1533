"""
Agent blueprint — previewed, approved and reversible AI actions.

Endpoints:
    /api/v1/agent/tools                                 GET   (category)
    /api/v1/teams/<tid>/agent/actions                   GET   (workspace_id, status, tool_name,
                                                               session_id, limit)
    /api/v1/teams/<tid>/agent/actions                   POST  {"tool_name", "params",
                                                               "workspace_id", "session_id"}
    /api/v1/teams/<tid>/agent/actions/batch-approve     POST  {"action_ids"}
    /api/v1/teams/<tid>/agent/actions/<aid>             GET
    /api/v1/teams/<tid>/agent/actions/<aid>/approve     POST
    /api/v1/teams/<tid>/agent/actions/<aid>/cancel      POST
    /api/v1/teams/<tid>/agent/actions/<aid>/rollback    POST
"""

from flask import Blueprint, current_app, jsonify, request

from app.ai.agent import AgentService
from app.auth import get_current_user_id, get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.core.exceptions import ValidationError
from app.services import team_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

agent_bp = Blueprint("agent", __name__, url_prefix="/api/v1")
register_error_handlers(agent_bp)


def _get_agent() -> AgentService:
    if not hasattr(current_app, "_ai_agent"):
        current_app._ai_agent = AgentService()
    return current_app._ai_agent


def _team(tid):
    team_service.get_team(tid)
    require_team_member(tid)


def _commit_action(action, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(action.to_dict()), status


@agent_bp.route("/agent/tools", methods=["GET"])
def list_tools():
    tools = _get_agent().registry.list_tools(request.args.get("category"))
    return jsonify({"items": tools, "total": len(tools)})


@agent_bp.route("/teams/<int:tid>/agent/actions", methods=["GET"])
def action_history(tid):
    _team(tid)
    actions = AgentService.history(
        tid,
        workspace_id=request.args.get("workspace_id", type=int),
        status=request.args.get("status"),
        tool_name=request.args.get("tool_name"),
        session_id=request.args.get("session_id"),
        limit=min(request.args.get("limit", 50, type=int), 200),
    )
    return jsonify({"items": [a.to_dict() for a in actions], "total": len(actions)})


@agent_bp.route("/teams/<int:tid>/agent/actions", methods=["POST"])
def preview_action(tid):
    _team(tid)
    data = request.get_json(silent=True) or {}
    if not data.get("tool_name"):
        return api_error(E.VALIDATION_REQUIRED, "tool_name is required")

    workspace_id = data.get("workspace_id")
    if workspace_id is not None:
        workspace = get_workspace_for_member(workspace_id)
        if workspace.team_id != tid:
            raise ValidationError("Workspace does not belong to this team")

    action = _get_agent().preview(
        data["tool_name"], data.get("params") or {},
        team_id=tid,
        workspace_id=workspace_id,
        user_id=get_current_user_id(),
        session_id=data.get("session_id"),
    )
    return _commit_action(action, 201)


@agent_bp.route("/teams/<int:tid>/agent/actions/batch-approve", methods=["POST"])
def batch_approve(tid):
    _team(tid)
    data = request.get_json(silent=True) or {}
    action_ids = data.get("action_ids")
    if not action_ids or not isinstance(action_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "action_ids must be a non-empty list")
    result = _get_agent().batch_approve(action_ids, team_id=tid, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result)


@agent_bp.route("/teams/<int:tid>/agent/actions/<int:aid>", methods=["GET"])
def get_action(tid, aid):
    _team(tid)
    return jsonify(_get_agent().get_action(aid, tid).to_dict())


@agent_bp.route("/teams/<int:tid>/agent/actions/<int:aid>/approve", methods=["POST"])
def approve_action(tid, aid):
    _team(tid)
    agent = _get_agent()
    action = agent.approve(agent.get_action(aid, tid), user_id=get_current_user_id())
    return _commit_action(action)


@agent_bp.route("/teams/<int:tid>/agent/actions/<int:aid>/cancel", methods=["POST"])
def cancel_action(tid, aid):
    _team(tid)
    agent = _get_agent()
    return _commit_action(agent.cancel(agent.get_action(aid, tid)))


@agent_bp.route("/teams/<int:tid>/agent/actions/<int:aid>/rollback", methods=["POST"])
def rollback_action(tid, aid):
    _team(tid)
    agent = _get_agent()
    return _commit_action(agent.rollback(agent.get_action(aid, tid)))
