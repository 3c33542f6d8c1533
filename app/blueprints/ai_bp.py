"""
AI Blueprint — field enhancement, suggestions and usage reporting.

Endpoints:
    META         /api/v1/ai/providers                               GET
                 /api/v1/ai/prompts                                 GET

    FIELDS       /api/v1/ai/work-items/<id>/opportunities           GET
                 /api/v1/ai/work-items/<id>/generate                POST  {"field_name"}
                 /api/v1/ai/work-items/<id>/generate/batch          POST  {"field_names"}
                 /api/v1/ai/estimate                                POST  {"field_names"}

    SUGGESTIONS  /api/v1/ai/workspaces/<wid>/suggest-dependencies   POST  {"connection_type"}
                 /api/v1/ai/workspaces/<wid>/suggest-strategies     POST  {"work_item_id"}

    USAGE        /api/v1/ai/usage                                   GET   (workspace_id, days)
                 /api/v1/ai/audit-log                               GET   (workspace_id, limit)

Suggestions are proposals only; accepting one goes through the connection
and strategy endpoints.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from app.ai import field_detector, field_tiers, suggestions
from app.ai.cost_manager import CostManager
from app.ai.gateway import AIUnavailableError, BudgetExceededError, LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.auth import get_current_user_id, get_workspace_for_member, require_team_member
from app.blueprints import register_error_handlers
from app.models import db
from app.models.ai import AIAuditLog
from app.models.workspace import Workspace
from app.services import work_item_service
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1/ai")
register_error_handlers(ai_bp)


@ai_bp.errorhandler(BudgetExceededError)
def _handle_budget(exc):
    db.session.rollback()
    return api_error(E.BUDGET_EXCEEDED, str(exc))


@ai_bp.errorhandler(AIUnavailableError)
def _handle_unavailable(exc):
    # keep the failed usage and audit rows
    db.session.commit()
    logger.error("AI provider unavailable: %s", exc)
    return api_error(E.UPSTREAM, "AI service is unavailable, please retry later")


# ── Lazy singletons stored on Flask app (test-isolation safe) ───────────────

def _get_gateway() -> LLMGateway:
    if not hasattr(current_app, "_ai_gateway"):
        current_app._ai_gateway = LLMGateway(
            cost_manager=CostManager(),
            retry_backoff=current_app.config.get("AI_RETRY_BACKOFF", 1.0),
        )
    return current_app._ai_gateway


def _get_prompt_registry() -> PromptRegistry:
    if not hasattr(current_app, "_ai_prompt_registry"):
        current_app._ai_prompt_registry = PromptRegistry()
    return current_app._ai_prompt_registry


def _commit_usage():
    """Persist usage/audit rows written by the gateway."""
    db.session.commit()


def _item_context(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    workspace = db.session.get(Workspace, item.workspace_id)
    return item, item.to_dict(include_timeline=True), workspace.to_dict() if workspace else None


# ══════════════════════════════════════════════════════════════════════════════
# META
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/providers", methods=["GET"])
def list_providers():
    gateway = _get_gateway()
    return jsonify({
        "providers": gateway.available_providers,
        "default_model": gateway.DEFAULT_CHAT_MODEL,
    })


@ai_bp.route("/prompts", methods=["GET"])
def list_prompts():
    """List all registered prompt templates."""
    return jsonify({"prompts": _get_prompt_registry().list_templates()})


# ══════════════════════════════════════════════════════════════════════════════
# FIELD ENHANCEMENT
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/work-items/<int:item_id>/opportunities", methods=["GET"])
def field_opportunities(item_id):
    _, item_dict, _ = _item_context(item_id)
    opportunities = field_detector.detect_opportunities(item_dict)
    enhanceable = field_tiers.detect_enhanceable_fields(item_dict)
    return jsonify({
        "work_item_id": item_id,
        "opportunities": opportunities,
        "enhanceable_fields": enhanceable,
        "estimate": field_tiers.estimate_cost([f["field"] for f in enhanceable]),
    })


@ai_bp.route("/work-items/<int:item_id>/generate", methods=["POST"])
def generate_field(item_id):
    data = request.get_json(silent=True) or {}
    field_name = data.get("field_name")
    if not field_name:
        return api_error(E.VALIDATION_REQUIRED, "field_name is required")

    _, item_dict, workspace_dict = _item_context(item_id)
    result = field_tiers.generate_field(
        _get_gateway(), field_name, item_dict, workspace_dict, user_id=get_current_user_id(),
    )
    _commit_usage()
    return jsonify(result)


@ai_bp.route("/work-items/<int:item_id>/generate/batch", methods=["POST"])
def generate_batch(item_id):
    data = request.get_json(silent=True) or {}
    field_names = data.get("field_names")
    if not field_names or not isinstance(field_names, list):
        return api_error(E.VALIDATION_REQUIRED, "field_names must be a non-empty list")

    _, item_dict, workspace_dict = _item_context(item_id)
    result = field_tiers.generate_batch(
        _get_gateway(), field_names, item_dict, workspace_dict, user_id=get_current_user_id(),
    )
    _commit_usage()
    return jsonify(result)


@ai_bp.route("/estimate", methods=["POST"])
def estimate():
    data = request.get_json(silent=True) or {}
    field_names = data.get("field_names")
    if not field_names or not isinstance(field_names, list):
        return api_error(E.VALIDATION_REQUIRED, "field_names must be a non-empty list")
    result = field_tiers.estimate_cost(field_names)
    result["tiers"] = {f: field_tiers.get_tier(f) for f in field_names}
    result["models"] = {f: field_tiers.select_model(f) for f in field_names}
    return jsonify(result)


# ══════════════════════════════════════════════════════════════════════════════
# SUGGESTIONS
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/workspaces/<int:wid>/suggest-dependencies", methods=["POST"])
def suggest_dependencies(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    result = suggestions.suggest_dependencies(
        _get_gateway(), workspace,
        user_id=get_current_user_id(),
        connection_type=data.get("connection_type"),
    )
    _commit_usage()
    return jsonify(result)


@ai_bp.route("/workspaces/<int:wid>/suggest-strategies", methods=["POST"])
def suggest_strategies(wid):
    workspace = get_workspace_for_member(wid)
    data = request.get_json(silent=True) or {}
    result = suggestions.suggest_strategy_alignments(
        _get_gateway(), workspace,
        user_id=get_current_user_id(),
        work_item_id=data.get("work_item_id"),
    )
    _commit_usage()
    return jsonify(result)


# ══════════════════════════════════════════════════════════════════════════════
# USAGE & AUDIT
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/usage", methods=["GET"])
def usage_summary():
    """Token and cost usage grouped by model."""
    workspace_id = request.args.get("workspace_id", type=int)
    if workspace_id is not None:
        get_workspace_for_member(workspace_id)
    days = request.args.get("days", 30, type=int)
    summary = CostManager().usage_summary(
        workspace_id=workspace_id, user_id=get_current_user_id(), days=days,
    )
    return jsonify(summary)


@ai_bp.route("/audit-log", methods=["GET"])
def audit_log():
    workspace_id = request.args.get("workspace_id", type=int)
    if workspace_id is None:
        return api_error(E.VALIDATION_REQUIRED, "workspace_id is required")
    get_workspace_for_member(workspace_id)
    limit = min(request.args.get("limit", 50, type=int), 200)
    entries = (
        AIAuditLog.query.filter_by(workspace_id=workspace_id)
        .order_by(AIAuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})
