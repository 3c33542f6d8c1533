"""Workspace service layer — workspace CRUD, stats and workflow mode.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().
"""
import logging
from datetime import datetime, timezone

from app.core.exceptions import ValidationError
from app.models import db
from app.models.work_item import WorkItem, WorkItemConnection
from app.models.workspace import (
    DEFAULT_WORKSPACE_COLOR,
    DEFAULT_WORKSPACE_ICON,
    HEX_COLOR_PATTERN,
    WORKSPACE_PHASES,
    Workspace,
    default_workflow_config,
)
from app.services import work_item_service

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100

UPDATABLE_FIELDS = (
    "name", "description", "phase", "color", "icon", "custom_instructions",
    "ai_memory", "workflow_mode_enabled", "workflow_config",
    "public_feedback_enabled", "voting_settings",
)


def validate_workspace(data):
    """Return {valid, errors} without touching the database."""
    errors = []
    name = data.get("name")
    if not name or not name.strip():
        errors.append("Workspace name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Workspace name must be {MAX_NAME_LENGTH} characters or less")
    color = data.get("color")
    if color and not HEX_COLOR_PATTERN.match(color):
        errors.append("Workspace color must be a valid hex color (e.g., #3b82f6)")
    phase = data.get("phase")
    if phase and phase not in WORKSPACE_PHASES:
        errors.append(f"phase must be one of: {', '.join(sorted(WORKSPACE_PHASES))}")
    return {"valid": not errors, "errors": errors}


def _raise_if_invalid(data):
    result = validate_workspace(data)
    if not result["valid"]:
        raise ValidationError(result["errors"][0], details={"errors": result["errors"]})


def create_workspace(team_id, data):
    _raise_if_invalid(data)
    workspace = Workspace(
        team_id=team_id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        phase=data.get("phase") or "research",
        color=data.get("color") or DEFAULT_WORKSPACE_COLOR,
        icon=data.get("icon") or DEFAULT_WORKSPACE_ICON,
        custom_instructions="",
        ai_memory=[],
        workflow_mode_enabled=False,
        workflow_config=default_workflow_config(),
    )
    db.session.add(workspace)
    db.session.flush()
    logger.info("Workspace %s created for team %s", workspace.id, team_id)
    return workspace


def update_workspace(workspace, data):
    """Whitelisted partial update."""
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    merged = {"name": workspace.name, **data}
    _raise_if_invalid(merged)
    if "ai_memory" in data and not isinstance(data["ai_memory"], list):
        raise ValidationError("ai_memory must be a list")
    if "workflow_config" in data and not isinstance(data["workflow_config"], dict):
        raise ValidationError("workflow_config must be an object")

    for field, value in data.items():
        setattr(workspace, field, value.strip() if field == "name" else value)
    workspace.updated_at = datetime.now(timezone.utc)
    db.session.flush()
    return workspace


def delete_workspace(workspace):
    """Delete a workspace and every work item in it."""
    for item in WorkItem.query.filter_by(workspace_id=workspace.id).all():
        work_item_service.delete_work_item(item)
    WorkItemConnection.query.filter_by(workspace_id=workspace.id).delete(synchronize_session=False)
    workspace_id = workspace.id
    db.session.delete(workspace)
    db.session.flush()
    logger.info("Workspace %s deleted", workspace_id)


def list_workspaces(team_id, search=None, sort_by="name", direction="asc"):
    workspaces = Workspace.query.filter_by(team_id=team_id).order_by(Workspace.id).all()
    if search is not None:
        term = search.strip().lower()
        if not term:
            return []
        workspaces = [
            w for w in workspaces
            if term in w.name.lower() or term in (w.description or "").lower()
        ]

    keys = {
        "name": lambda w: w.name.lower(),
        "created": lambda w: (w.created_at or datetime.min, w.id),
        "updated": lambda w: (w.updated_at or datetime.min, w.id),
        "features": count_work_items,
    }
    key = keys.get(sort_by)
    if key is None:
        return workspaces
    return sorted(workspaces, key=key, reverse=(direction == "desc"))


def count_work_items(workspace):
    return WorkItem.query.filter_by(workspace_id=workspace.id).count()


def get_stats(workspace):
    items = WorkItem.query.filter_by(workspace_id=workspace.id).all()
    stats = work_item_service.get_stats(items)
    return {
        "total_work_items": stats["total"],
        "by_status": stats["by_status"],
        "by_priority": stats["by_priority"],
        "workflow": work_item_service.workflow_stats(items),
    }


def set_workflow_mode(workspace, enabled: bool):
    workspace.workflow_mode_enabled = bool(enabled)
    if enabled and not workspace.workflow_config:
        workspace.workflow_config = default_workflow_config()
    workspace.updated_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("Workflow mode %s for workspace %s",
                "enabled" if enabled else "disabled", workspace.id)
    return workspace


def add_memory(workspace, entry):
    """Append one note to the workspace's AI memory."""
    if not isinstance(entry, (str, dict)) or not entry:
        raise ValidationError("memory entry must be a non-empty string or object")
    memory = list(workspace.ai_memory or [])
    memory.append(entry)
    workspace.ai_memory = memory
    db.session.flush()
    return workspace
