"""
Product Workspace Platform
AI Agent — approval-gated tool execution with rollback.

The agent never writes directly.  Every tool call is first recorded as a
pending AIActionHistory row (``preview``); a human approves it, the tool
runs inside a savepoint and the row records the outcome.  Reversible tools
keep enough ``rollback_data`` to undo themselves.

Status machine:
    pending → approved → executing → completed | failed
    completed → rolled_back          (reversible tools only)
    pending → cancelled
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models import db
from app.models.ai import AIActionHistory
from app.models.strategy import Strategy
from app.models.work_item import WorkItem, WorkItemConnection
from app.models.workspace import Workspace

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": {"approved", "cancelled"},
    "approved": {"executing"},
    "executing": {"completed", "failed"},
    "completed": {"rolled_back"},
    "failed": set(),
    "cancelled": set(),
    "rolled_back": set(),
}

_TOOL_ERRORS = (ValidationError, NotFoundError, ConflictError, PermissionDeniedError)


@dataclass
class ToolDefinition:
    """Metadata plus the callables behind one agent tool.

    ``handler(action, params)`` returns ``(output, affected_items, rollback_data)``.
    ``rollback(action, rollback_data)`` undoes a completed run.
    """

    name: str
    category: str
    action_type: str
    description: str
    handler: Callable
    rollback: Callable | None = None
    requires_approval: bool = True
    is_reversible: bool = False
    required_params: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "category": self.category,
            "action_type": self.action_type,
            "description": self.description,
            "requires_approval": self.requires_approval,
            "is_reversible": self.is_reversible,
            "required_params": list(self.required_params),
        }


# ── Tool helpers ─────────────────────────────────────────────────────────────


def _workspace(action) -> Workspace:
    if action.workspace_id is None:
        raise ValidationError(f"Tool {action.tool_name} requires a workspace_id")
    workspace = db.session.get(Workspace, action.workspace_id)
    if workspace is None or workspace.team_id != action.team_id:
        raise NotFoundError("Workspace", action.workspace_id)
    return workspace


def _work_item(action, work_item_id) -> WorkItem:
    item = db.session.get(WorkItem, work_item_id)
    if item is None or item.team_id != action.team_id:
        raise NotFoundError("Work item", work_item_id)
    return item


# ── Tool handlers ────────────────────────────────────────────────────────────


def _create_work_item(action, params):
    from app.services import work_item_service

    workspace = _workspace(action)
    item = work_item_service.create_work_item(workspace, params, user_id=action.user_id)
    return item.to_dict(), [{"type": "work_item", "id": item.id}], {"work_item_id": item.id}


def _rollback_create_work_item(action, data):
    from app.services import work_item_service

    item = db.session.get(WorkItem, data["work_item_id"])
    if item is not None:
        work_item_service.delete_work_item(item)


def _update_work_item(action, params):
    from app.services import work_item_service

    item = _work_item(action, params.get("work_item_id"))
    changes = params.get("changes") or {}
    if not changes:
        raise ValidationError("changes is required")
    before = item.to_dict()
    previous = {k: before[k] for k in changes if k in before}
    work_item_service.update_work_item(item, changes)
    return (
        item.to_dict(),
        [{"type": "work_item", "id": item.id}],
        {"work_item_id": item.id, "previous": previous},
    )


def _rollback_update_work_item(action, data):
    from app.services import work_item_service

    item = db.session.get(WorkItem, data["work_item_id"])
    if item is None:
        raise NotFoundError("Work item", data["work_item_id"])
    work_item_service.update_work_item(item, data["previous"])


def _create_connection(action, params):
    from app.services import connection_service

    workspace = _workspace(action)
    connection = connection_service.create_connection(workspace.id, params, user_id=action.user_id)
    connection.discovered_by = "ai"
    if params.get("confidence") is not None:
        connection.confidence = float(params["confidence"])
    db.session.flush()
    return (
        connection.to_dict(),
        [{"type": "connection", "id": connection.id}],
        {"connection_id": connection.id},
    )


def _rollback_create_connection(action, data):
    from app.services import connection_service

    connection = db.session.get(WorkItemConnection, data["connection_id"])
    if connection is not None:
        connection_service.delete_connection(connection)


def _analyze_dependencies(action, params):
    from app.services import dependency_service

    workspace = _workspace(action)
    result = dependency_service.analyze(workspace.id)
    return result, [], None


def _calculate_importance(action, params):
    from app.services import importance_service

    workspace = _workspace(action)
    scores = importance_service.calculate_workspace_importance(workspace.id)
    return (
        {"scores": scores, "count": len(scores)},
        [{"type": "work_item", "id": s["feature_id"]} for s in scores],
        None,
    )


def _align_to_strategy(action, params):
    from app.services import strategy_service

    item = _work_item(action, params.get("work_item_id"))
    previous = item.strategy_id
    strategy_service.set_primary_strategy(item, params.get("strategy_id"))
    return (
        item.to_dict(),
        [{"type": "work_item", "id": item.id}],
        {"work_item_id": item.id, "previous_strategy_id": previous},
    )


def _rollback_align_to_strategy(action, data):
    item = db.session.get(WorkItem, data["work_item_id"])
    if item is None:
        raise NotFoundError("Work item", data["work_item_id"])
    item.strategy_id = data["previous_strategy_id"]
    db.session.flush()


def _create_strategy(action, params):
    from app.services import strategy_service

    data = dict(params)
    if action.workspace_id is not None:
        data.setdefault("workspace_id", action.workspace_id)
    strategy = strategy_service.create_strategy(action.team_id, data, user_id=action.user_id)
    return strategy.to_dict(), [{"type": "strategy", "id": strategy.id}], {"strategy_id": strategy.id}


def _rollback_create_strategy(action, data):
    from app.services import strategy_service

    strategy = db.session.get(Strategy, data["strategy_id"])
    if strategy is not None:
        strategy_service.delete_strategy(strategy)


# ── Registry ─────────────────────────────────────────────────────────────────


class ToolRegistry:
    """Name → ToolDefinition lookup, pre-loaded with the built-in tools."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}
        for tool in _builtin_tools():
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if tool is None:
            raise ValidationError(f"Unknown tool: {name}")
        return tool

    def list_tools(self, category: str | None = None) -> list[dict]:
        return [
            t.to_dict() for t in sorted(self._tools.values(), key=lambda t: t.name)
            if category is None or t.category == category
        ]


def _builtin_tools():
    return [
        ToolDefinition(
            name="create_work_item", category="creation", action_type="create",
            description="Create a work item in the workspace",
            handler=_create_work_item, rollback=_rollback_create_work_item,
            is_reversible=True, required_params=("name",),
        ),
        ToolDefinition(
            name="update_work_item", category="optimization", action_type="update",
            description="Change fields on an existing work item",
            handler=_update_work_item, rollback=_rollback_update_work_item,
            is_reversible=True, required_params=("work_item_id", "changes"),
        ),
        ToolDefinition(
            name="create_connection", category="creation", action_type="create",
            description="Connect two work items",
            handler=_create_connection, rollback=_rollback_create_connection,
            is_reversible=True,
            required_params=("source_work_item_id", "target_work_item_id", "connection_type"),
        ),
        ToolDefinition(
            name="analyze_dependencies", category="analysis", action_type="analyze",
            description="Run critical path and bottleneck analysis for the workspace",
            handler=_analyze_dependencies, requires_approval=False,
        ),
        ToolDefinition(
            name="calculate_importance", category="analysis", action_type="analyze",
            description="Recalculate importance scores for every work item in the workspace",
            handler=_calculate_importance, requires_approval=False,
        ),
        ToolDefinition(
            name="align_to_strategy", category="strategy", action_type="update",
            description="Set the primary strategy of a work item",
            handler=_align_to_strategy, rollback=_rollback_align_to_strategy,
            is_reversible=True, required_params=("work_item_id", "strategy_id"),
        ),
        ToolDefinition(
            name="create_strategy", category="strategy", action_type="create",
            description="Create a pillar, objective, key result or initiative",
            handler=_create_strategy, rollback=_rollback_create_strategy,
            is_reversible=True, required_params=("title", "type"),
        ),
    ]


# ── Service ──────────────────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _transition(action: AIActionHistory, new_status: str) -> None:
    if new_status not in ALLOWED_TRANSITIONS.get(action.status, set()):
        raise ValidationError(
            f"Cannot move action {action.id} from {action.status} to {new_status}", status=409,
        )
    logger.info("AI action %s: %s → %s", action.id, action.status, new_status)
    action.status = new_status


class AgentService:
    """Lifecycle of agent actions backed by AIActionHistory rows."""

    def __init__(self, registry: ToolRegistry | None = None):
        self.registry = registry or ToolRegistry()

    # ── Create ──

    def preview(self, tool_name: str, params: dict, *, team_id, workspace_id=None,
                user_id=None, session_id=None) -> AIActionHistory:
        """Record a pending action without running it."""
        tool = self.registry.get(tool_name)
        params = params or {}
        missing = [p for p in tool.required_params if params.get(p) in (None, "", {})]
        if missing:
            raise ValidationError(f"Missing parameters for {tool_name}: {', '.join(missing)}")

        action = AIActionHistory(
            team_id=team_id,
            workspace_id=workspace_id,
            user_id=user_id,
            session_id=session_id,
            tool_name=tool.name,
            tool_category=tool.category,
            action_type=tool.action_type,
            input_params=params,
            is_reversible=tool.is_reversible,
            status="pending",
        )
        db.session.add(action)
        db.session.flush()
        logger.info("AI action %s previewed: %s (team=%s)", action.id, tool.name, team_id)
        return action

    def get_action(self, action_id, team_id=None) -> AIActionHistory:
        action = db.session.get(AIActionHistory, action_id)
        if action is None or (team_id is not None and action.team_id != team_id):
            raise NotFoundError("AI action", action_id)
        return action

    # ── Execute ──

    def approve(self, action: AIActionHistory, user_id=None) -> AIActionHistory:
        _transition(action, "approved")
        action.approved_at = _now()
        action.approved_by = user_id
        db.session.flush()
        return self._execute(action)

    def _execute(self, action: AIActionHistory) -> AIActionHistory:
        tool = self.registry.get(action.tool_name)
        _transition(action, "executing")
        action.execution_started_at = _now()
        db.session.flush()
        started = time.monotonic()

        try:
            with db.session.begin_nested():
                output, affected, rollback_data = tool.handler(action, dict(action.input_params or {}))
        except _TOOL_ERRORS as exc:
            _transition(action, "failed")
            action.error_message = str(exc)
            logger.warning("AI action %s (%s) failed: %s", action.id, action.tool_name, exc)
        else:
            _transition(action, "completed")
            action.output_result = output
            action.affected_items = affected
            action.rollback_data = rollback_data

        action.execution_completed_at = _now()
        action.execution_duration_ms = int((time.monotonic() - started) * 1000)
        db.session.flush()
        return action

    def batch_approve(self, action_ids, *, team_id, user_id=None) -> dict:
        results = []
        for action_id in action_ids:
            action = self.get_action(action_id, team_id)
            if action.status != "pending":
                results.append({"id": action.id, "status": action.status, "skipped": True})
                continue
            self.approve(action, user_id=user_id)
            results.append({"id": action.id, "status": action.status, "skipped": False})

        return {
            "results": results,
            "completed": sum(1 for r in results if r["status"] == "completed" and not r["skipped"]),
            "failed": sum(1 for r in results if r["status"] == "failed"),
            "skipped": sum(1 for r in results if r["skipped"]),
        }

    def cancel(self, action: AIActionHistory) -> AIActionHistory:
        _transition(action, "cancelled")
        db.session.flush()
        return action

    def rollback(self, action: AIActionHistory) -> AIActionHistory:
        tool = self.registry.get(action.tool_name)
        if not action.is_reversible or tool.rollback is None:
            raise ValidationError(f"Action {action.id} ({action.tool_name}) is not reversible")
        if action.status != "completed":
            raise ValidationError(
                f"Only completed actions can be rolled back (status: {action.status})", status=409,
            )

        with db.session.begin_nested():
            tool.rollback(action, action.rollback_data or {})
        _transition(action, "rolled_back")
        action.rolled_back_at = _now()
        db.session.flush()
        return action

    # ── Query ──

    @staticmethod
    def history(team_id, workspace_id=None, status=None, tool_name=None,
                session_id=None, limit: int = 50) -> list[AIActionHistory]:
        query = AIActionHistory.query.filter_by(team_id=team_id)
        if workspace_id is not None:
            query = query.filter_by(workspace_id=workspace_id)
        if status:
            query = query.filter_by(status=status)
        if tool_name:
            query = query.filter_by(tool_name=tool_name)
        if session_id:
            query = query.filter_by(session_id=session_id)
        return query.order_by(AIActionHistory.id.desc()).limit(limit).all()
