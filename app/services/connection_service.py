"""
Connection Service — typed edges between work items of one workspace.

Rules:
    - connection_type must be one of CONNECTION_TYPES
    - no self-connections
    - both work items must belong to the workspace
    - at most one *active* connection per (source, target, type)
    - complements / conflicts / relates_to are stored as bidirectional
    - user-created connections: confidence 1.0, discovered_by "user", status "active"

Services flush only; the caller commits.
"""

import logging

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.work_item import (
    BIDIRECTIONAL_CONNECTION_TYPES,
    CONNECTION_TYPES,
    WorkItem,
    WorkItemConnection,
)

logger = logging.getLogger(__name__)


def list_connections(workspace_id, status: str | None = "active") -> list[WorkItemConnection]:
    query = WorkItemConnection.query.filter_by(workspace_id=workspace_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(WorkItemConnection.created_at.desc(), WorkItemConnection.id.desc()).all()


def list_item_connections(work_item_id) -> list[WorkItemConnection]:
    return (
        WorkItemConnection.query
        .filter(
            (WorkItemConnection.source_work_item_id == work_item_id)
            | (WorkItemConnection.target_work_item_id == work_item_id)
        )
        .filter_by(status="active")
        .all()
    )


def create_connection(workspace_id, data: dict, user_id=None) -> WorkItemConnection:
    source_id = data.get("source_work_item_id")
    target_id = data.get("target_work_item_id")
    connection_type = data.get("connection_type")

    if not source_id or not target_id or not connection_type:
        raise ValidationError("Missing required fields")
    if connection_type not in CONNECTION_TYPES:
        raise ValidationError("Invalid connection type")
    if source_id == target_id:
        raise ValidationError("Cannot create dependency to itself")

    found = (
        WorkItem.query
        .filter(WorkItem.workspace_id == workspace_id, WorkItem.id.in_([source_id, target_id]))
        .count()
    )
    if found != 2:
        raise NotFoundError("Source or target work item")

    duplicate = WorkItemConnection.query.filter_by(
        workspace_id=workspace_id,
        source_work_item_id=source_id,
        target_work_item_id=target_id,
        connection_type=connection_type,
        status="active",
    ).first()
    if duplicate:
        raise ValidationError("This dependency already exists")

    strength = data.get("strength", 1.0)
    try:
        strength = float(strength)
    except (TypeError, ValueError) as exc:
        raise ValidationError("strength must be a number") from exc

    connection = WorkItemConnection(
        workspace_id=workspace_id,
        source_work_item_id=source_id,
        target_work_item_id=target_id,
        connection_type=connection_type,
        is_bidirectional=connection_type in BIDIRECTIONAL_CONNECTION_TYPES,
        strength=strength,
        confidence=1.0,
        reason=data.get("reason") or "",
        discovered_by="user",
        status="active",
        created_by=user_id,
    )
    db.session.add(connection)
    db.session.flush()
    logger.info("Connection %s created: %s -[%s]-> %s",
                connection.id, source_id, connection_type, target_id)
    return connection


def update_connection_status(connection: WorkItemConnection, status: str) -> WorkItemConnection:
    if status not in ("active", "inactive", "rejected"):
        raise ValidationError("Invalid connection status")
    connection.status = status
    db.session.flush()
    return connection


def delete_connection(connection: WorkItemConnection) -> None:
    db.session.delete(connection)
    db.session.flush()


def workspace_graph_inputs(workspace_id) -> tuple[list[dict], list[dict]]:
    """Load (features, connections) for app.services.graph_analysis."""
    items = (
        WorkItem.query
        .filter_by(workspace_id=workspace_id)
        .order_by(WorkItem.created_at, WorkItem.id)
        .all()
    )
    connections = WorkItemConnection.query.filter_by(
        workspace_id=workspace_id, status="active",
    ).order_by(WorkItemConnection.id).all()
    return [i.to_graph_node() for i in items], [c.to_graph_edge() for c in connections]
