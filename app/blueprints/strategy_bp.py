"""
Strategy blueprint — OKR hierarchy and work item alignment.

Endpoints:
    /api/v1/teams/<tid>/strategies                GET (workspace_id, type, status, tree), POST
    /api/v1/teams/<tid>/strategies/stats          GET (workspace_id)
    /api/v1/strategies/<sid>                      GET, PUT, DELETE
    /api/v1/strategies/<sid>/reorder              PUT   {"parent_id", "sort_order"}
    /api/v1/strategies/<sid>/work-items           GET
    /api/v1/strategies/<sid>/recalculate          POST
    /api/v1/work-items/<id>/strategy              PUT   {"strategy_id"}  (primary)
    /api/v1/work-items/<id>/strategies            POST  (secondary alignment)
    /api/v1/work-items/<id>/strategies/<sid>      DELETE
"""

from flask import Blueprint, jsonify, request

from app.auth import get_current_user_id, require_team_member
from app.blueprints import register_error_handlers
from app.services import strategy_service, team_service, work_item_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

strategy_bp = Blueprint("strategy", __name__, url_prefix="/api/v1")
register_error_handlers(strategy_bp)


def _get_strategy(sid):
    strategy = strategy_service.get_strategy(sid)
    require_team_member(strategy.team_id)
    return strategy


def _get_work_item(item_id):
    item = work_item_service.get_work_item(item_id)
    require_team_member(item.team_id)
    return item


# ── Collection ───────────────────────────────────────────────────────────────

@strategy_bp.route("/teams/<int:tid>/strategies", methods=["GET"])
def list_strategies(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    workspace_id = request.args.get("workspace_id", type=int)
    if request.args.get("tree") == "true":
        tree = strategy_service.get_tree(tid, workspace_id)
        return jsonify({"items": tree, "total": len(tree)})

    strategies = strategy_service.list_strategies(
        tid, workspace_id,
        strategy_type=request.args.get("type"),
        status=request.args.get("status"),
    )
    return jsonify({"items": [s.to_dict() for s in strategies], "total": len(strategies)})


@strategy_bp.route("/teams/<int:tid>/strategies", methods=["POST"])
def create_strategy(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    data = request.get_json(silent=True) or {}
    strategy = strategy_service.create_strategy(tid, data, user_id=get_current_user_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(strategy.to_dict()), 201


@strategy_bp.route("/teams/<int:tid>/strategies/stats", methods=["GET"])
def strategy_stats(tid):
    team_service.get_team(tid)
    require_team_member(tid)
    return jsonify(strategy_service.get_stats(tid, request.args.get("workspace_id", type=int)))


# ── Single strategy ──────────────────────────────────────────────────────────

@strategy_bp.route("/strategies/<int:sid>", methods=["GET"])
def get_strategy(sid):
    strategy = _get_strategy(sid)
    return jsonify(strategy.to_dict(include_children=True))


@strategy_bp.route("/strategies/<int:sid>", methods=["PUT"])
def update_strategy(sid):
    strategy = _get_strategy(sid)
    data = request.get_json(silent=True) or {}
    strategy_service.update_strategy(strategy, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(strategy.to_dict())


@strategy_bp.route("/strategies/<int:sid>", methods=["DELETE"])
def delete_strategy(sid):
    strategy = _get_strategy(sid)
    strategy_service.delete_strategy(strategy)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "id": sid})


@strategy_bp.route("/strategies/<int:sid>/reorder", methods=["PUT"])
def reorder_strategy(sid):
    strategy = _get_strategy(sid)
    data = request.get_json(silent=True) or {}
    if "sort_order" not in data:
        return api_error(E.VALIDATION_REQUIRED, "sort_order is required")
    strategy_service.reorder(strategy, data.get("parent_id"), data["sort_order"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(strategy.to_dict())


@strategy_bp.route("/strategies/<int:sid>/work-items", methods=["GET"])
def strategy_work_items(sid):
    strategy = _get_strategy(sid)
    items = strategy_service.aligned_work_items(strategy)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@strategy_bp.route("/strategies/<int:sid>/recalculate", methods=["POST"])
def recalculate_strategy(sid):
    strategy = _get_strategy(sid)
    strategy_service.recalculate_progress(strategy)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(strategy.to_dict())


# ── Alignment ────────────────────────────────────────────────────────────────

@strategy_bp.route("/work-items/<int:item_id>/strategy", methods=["PUT"])
def set_primary_strategy(item_id):
    item = _get_work_item(item_id)
    data = request.get_json(silent=True) or {}
    if "strategy_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "strategy_id is required (null to clear)")
    strategy_service.set_primary_strategy(item, data["strategy_id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@strategy_bp.route("/work-items/<int:item_id>/strategies", methods=["POST"])
def add_alignment(item_id):
    item = _get_work_item(item_id)
    data = request.get_json(silent=True) or {}
    if not data.get("strategy_id"):
        return api_error(E.VALIDATION_REQUIRED, "strategy_id is required")
    alignment = strategy_service.add_alignment(
        item, data["strategy_id"],
        strength=data.get("alignment_strength", "medium"),
        notes=data.get("notes", ""),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(alignment.to_dict()), 201


@strategy_bp.route("/work-items/<int:item_id>/strategies/<int:sid>", methods=["DELETE"])
def remove_alignment(item_id, sid):
    item = _get_work_item(item_id)
    strategy_service.remove_alignment(item, sid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True, "work_item_id": item_id, "strategy_id": sid})
