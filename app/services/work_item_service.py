"""Work item service layer — CRUD, filtering, workflow and status rollup.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Operations:
- create / update (partial merge, ``id`` and ``created_at`` ignored) / delete
- list with filter (status, priority, health, tag, type), search and sort
- validate, duplicate, stats, active blockers, overdue
- workflow stage initialization and transitions with history
- calculated status and per-timeline breakdown
"""
import logging
from datetime import date, datetime, timezone

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.feedback import Feedback
from app.models.strategy import WorkItemStrategy
from app.models.work_item import (
    HEALTH_STATUSES,
    LIST_FIELDS,
    PRIORITY_LEVELS,
    TIMELINES,
    WORK_ITEM_STATUSES,
    WORK_ITEM_TYPES,
    WORKFLOW_STAGES,
    FeatureImportanceScore,
    TimelineItem,
    WorkItem,
    WorkItemConnection,
)
from app.services import timeline_service
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}
STATUS_ORDER = {"not_started": 1, "in_progress": 2, "on_hold": 3, "completed": 4}
SORT_FIELDS = {"name", "created", "updated", "priority", "status"}

DATE_FIELDS = (
    "planned_start_date", "planned_end_date", "actual_start_date", "actual_end_date",
)
TEXT_FIELDS = ("purpose", "usp", "customer_impact", "category", "owner")
NUMERIC_FIELDS = ("estimated_hours", "duration_days", "story_points", "progress_percent")
UPDATABLE_FIELDS = (
    ("name", "type", "status", "priority", "health", "business_value",
     "department_id", "strategy_id", "parent_id", "is_epic")
    + TEXT_FIELDS + NUMERIC_FIELDS + DATE_FIELDS + LIST_FIELDS
)
IMMUTABLE_FIELDS = {"id", "created_at", "team_id", "workspace_id"}


def _check_choice(data, field, allowed):
    value = data.get(field)
    if value is not None and value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")


def _validate_fields(data):
    _check_choice(data, "type", WORK_ITEM_TYPES)
    _check_choice(data, "status", WORK_ITEM_STATUSES)
    _check_choice(data, "priority", PRIORITY_LEVELS)
    _check_choice(data, "health", HEALTH_STATUSES)
    _check_choice(data, "business_value", PRIORITY_LEVELS)
    for field in LIST_FIELDS:
        if field in data and data[field] is not None and not isinstance(data[field], list):
            raise ValidationError(f"{field} must be a list")
    for field in NUMERIC_FIELDS:
        value = data.get(field)
        if value is not None and not isinstance(value, (int, float)):
            raise ValidationError(f"{field} must be a number")


def _apply(item, data):
    for field in UPDATABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in DATE_FIELDS:
            value = parse_date(value) if value else None
        elif field in LIST_FIELDS:
            value = list(value or [])
        setattr(item, field, value)


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_work_item(workspace, data, user_id=None):
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("Work item name is required")
    _validate_fields(data)

    item = WorkItem(
        team_id=workspace.team_id,
        workspace_id=workspace.id,
        name=name,
        type=data.get("type") or "feature",
        status=data.get("status") or "not_started",
        priority=data.get("priority") or "medium",
        health=data.get("health") or "on_track",
        business_value=data.get("business_value") or "medium",
        created_by=user_id,
    )
    for field in TEXT_FIELDS:
        setattr(item, field, data.get(field) or "")
    for field in LIST_FIELDS:
        setattr(item, field, [])
    handled = {"name", "type", "status", "priority", "health", "business_value", *TEXT_FIELDS}
    _apply(item, {k: v for k, v in data.items() if k not in handled})

    stage = data.get("workflow_stage")
    if stage is not None and stage not in WORKFLOW_STAGES:
        raise ValidationError(f"workflow_stage must be one of: {', '.join(WORKFLOW_STAGES)}")
    item.workflow_stage = stage
    initialize_workflow(item)

    db.session.add(item)
    db.session.flush()

    # one item per timeline, validated like a single add
    for entry in data.get("timeline_items") or []:
        if not isinstance(entry, dict):
            raise ValidationError("timeline_items entries must be objects")
        timeline_service.add_item(item, {**entry, "name": entry.get("name") or item.name})

    logger.info("Work item %s created in workspace %s", item.id, workspace.id)
    return item


def update_work_item(item, data):
    """Partial merge. ``id`` / ``created_at`` / ownership keys are ignored."""
    data = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}
    if "name" in data and not (isinstance(data["name"], str) and data["name"].strip()):
        raise ValidationError("Work item name is required")
    _validate_fields(data)
    if "name" in data:
        data["name"] = data["name"].strip()
    _apply(item, data)
    if "workflow_stage" in data and data["workflow_stage"] != item.workflow_stage:
        update_workflow_stage(item, data["workflow_stage"], notes=data.get("stage_notes"))
    item.updated_at = datetime.now(timezone.utc)
    db.session.flush()
    return item


def delete_work_item(item):
    """Remove a work item and everything hanging off it."""
    item_id = item.id
    WorkItemConnection.query.filter(
        (WorkItemConnection.source_work_item_id == item_id)
        | (WorkItemConnection.target_work_item_id == item_id)
    ).delete(synchronize_session=False)
    FeatureImportanceScore.query.filter_by(work_item_id=item_id).delete(synchronize_session=False)
    WorkItemStrategy.query.filter_by(work_item_id=item_id).delete(synchronize_session=False)
    Feedback.query.filter_by(work_item_id=item_id).delete(synchronize_session=False)
    Feedback.query.filter_by(implemented_in_id=item_id).update(
        {"implemented_in_id": None}, synchronize_session=False,
    )
    WorkItem.query.filter_by(parent_id=item_id).update(
        {"parent_id": None}, synchronize_session=False,
    )
    db.session.delete(item)
    db.session.flush()
    logger.info("Work item %s deleted", item_id)


def get_work_item(item_id, workspace_id=None):
    item = db.session.get(WorkItem, item_id)
    if item is None or (workspace_id is not None and item.workspace_id != workspace_id):
        raise NotFoundError("Work item", item_id)
    return item


# ── Query ────────────────────────────────────────────────────────────────────


def list_work_items(workspace_id, filters=None, search=None, sort_by="created", direction="desc"):
    filters = filters or {}
    query = WorkItem.query.filter_by(workspace_id=workspace_id)
    for field in ("status", "priority", "health", "type", "workflow_stage", "department_id"):
        if filters.get(field):
            query = query.filter(getattr(WorkItem, field) == filters[field])
    items = query.order_by(WorkItem.id).all()

    if filters.get("tag"):
        items = filter_by_tag(items, filters["tag"])
    if search is not None:
        items = search_items(items, search)
    return sort_items(items, sort_by, direction)


def filter_by_tag(items, tag):
    return [i for i in items if tag in (i.tags or [])]


def search_items(items, term):
    """Case-insensitive match on name, purpose and usp.  Blank term → []."""
    term = (term or "").strip().lower()
    if not term:
        return []
    return [
        i for i in items
        if term in (i.name or "").lower()
        or term in (i.purpose or "").lower()
        or term in (i.usp or "").lower()
    ]


def _sort_key(sort_by):
    if sort_by == "name":
        return lambda i: (i.name or "").lower()
    if sort_by == "created":
        return lambda i: (i.created_at or datetime.min, i.id or 0)
    if sort_by == "updated":
        return lambda i: (i.updated_at or datetime.min, i.id or 0)
    if sort_by == "priority":
        return lambda i: PRIORITY_ORDER.get(i.priority, 0)
    if sort_by == "status":
        return lambda i: STATUS_ORDER.get(i.status, 0)
    return None


def sort_items(items, sort_by="created", direction="desc"):
    if sort_by not in SORT_FIELDS:
        return list(items)
    return sorted(items, key=_sort_key(sort_by), reverse=(direction == "desc"))


def validate_work_item(data):
    """Return {valid, errors} without touching the database."""
    errors = []
    if not (data.get("name") or "").strip():
        errors.append("Work item name is required")
    if not (data.get("type") or "").strip():
        errors.append("Work item type is required")
    if not data.get("workspace_id"):
        errors.append("Workspace ID is required")
    timeline_items = data.get("timeline_items")
    if not isinstance(timeline_items, list):
        errors.append("Timeline items must be a list")
    elif not timeline_items:
        errors.append("At least one timeline item is required")
    return {"valid": not errors, "errors": errors}


def duplicate_work_item(item, user_id=None):
    copy = WorkItem(
        team_id=item.team_id,
        workspace_id=item.workspace_id,
        name=f"{item.name} (Copy)",
        created_by=user_id,
    )
    for field in UPDATABLE_FIELDS:
        if field == "name":
            continue
        value = getattr(item, field)
        setattr(copy, field, list(value) if isinstance(value, list) else value)
    copy.status = "not_started"
    copy.actual_start_date = None
    copy.actual_end_date = None
    copy.workflow_stage = item.workflow_stage or "ideation"
    copy.stage_history = list(item.stage_history or [])
    db.session.add(copy)
    db.session.flush()

    for source in item.timeline_items:
        db.session.add(TimelineItem(
            work_item_id=copy.id,
            team_id=copy.team_id,
            timeline=source.timeline,
            name=source.name,
            description=source.description,
            difficulty=source.difficulty,
            category=list(source.category or []),
            phase=source.phase,
            estimated_hours=source.estimated_hours,
            sort_order=source.sort_order,
        ))
    db.session.flush()
    logger.info("Work item %s duplicated as %s", item.id, copy.id)
    return copy


def get_stats(items):
    stats = {
        "total": len(items),
        "by_status": {s: 0 for s in ("not_started", "in_progress", "completed", "on_hold")},
        "by_priority": {p: 0 for p in ("critical", "high", "medium", "low")},
        "by_health": {h: 0 for h in ("on_track", "at_risk", "off_track")},
    }
    for item in items:
        if item.status in stats["by_status"]:
            stats["by_status"][item.status] += 1
        if item.priority in stats["by_priority"]:
            stats["by_priority"][item.priority] += 1
        if item.health in stats["by_health"]:
            stats["by_health"][item.health] += 1
    return stats


def with_active_blockers(items):
    return [
        i for i in items
        if any(isinstance(b, dict) and b.get("status") == "active" for b in (i.blockers or []))
    ]


def overdue(items, today=None):
    today = today or date.today()
    return [
        i for i in items
        if i.planned_end_date and i.planned_end_date < today and i.status != "completed"
    ]


def list_children(item):
    return WorkItem.query.filter_by(parent_id=item.id).order_by(WorkItem.id).all()


# ── Workflow ─────────────────────────────────────────────────────────────────


def initialize_workflow(item):
    """Set the ideation stage on items that have none."""
    if item.workflow_stage and item.stage_history:
        return item
    item.workflow_stage = item.workflow_stage or "ideation"
    item.stage_history = [{
        "stage": item.workflow_stage,
        "changed_at": datetime.now(timezone.utc).isoformat(),
        "notes": "Initial workflow stage",
    }]
    return item


def update_workflow_stage(item, new_stage, notes=None, user_id=None):
    if new_stage not in WORKFLOW_STAGES:
        raise ValidationError(f"workflow_stage must be one of: {', '.join(WORKFLOW_STAGES)}")
    previous = item.workflow_stage or "ideation"
    history = list(item.stage_history or [])
    history.append({
        "stage": new_stage,
        "previous_stage": previous,
        "changed_at": datetime.now(timezone.utc).isoformat(),
        "changed_by": user_id,
        "notes": notes or f"Manual stage update to {new_stage}",
    })
    item.workflow_stage = new_stage
    item.stage_history = history
    db.session.flush()
    logger.info("Work item %s moved %s → %s", item.id, previous, new_stage)
    return item


def check_stage_readiness(item, workflow_config):
    """Which of the current stage's required fields are still empty."""
    requirements = (workflow_config or {}).get("stage_requirements", {})
    required = requirements.get(item.workflow_stage or "ideation", [])
    missing = []
    for field in required:
        if field == "progress":
            value = item.progress_percent
        else:
            value = getattr(item, field, None)
        if not value:
            missing.append(field)
    done = len(required) - len(missing)
    return {
        "stage": item.workflow_stage,
        "can_advance": not missing,
        "missing_requirements": missing,
        "completion_percent": round(done / len(required) * 100) if required else 100,
    }


def workflow_stats(items):
    by_stage = {stage: 0 for stage in WORKFLOW_STAGES}
    for item in items:
        stage = item.workflow_stage or "ideation"
        if stage in by_stage:
            by_stage[stage] += 1
    return {"total": len(items), "by_stage": by_stage}


# ── Calculated status ────────────────────────────────────────────────────────


def calculate_status(timeline_items):
    statuses = [t.status for t in timeline_items]
    if not statuses:
        return "not_started"
    if all(s == "completed" for s in statuses):
        return "completed"
    if "blocked" in statuses and "in_progress" not in statuses:
        return "blocked"
    if "in_progress" in statuses or "completed" in statuses:
        return "in_progress"
    return "not_started"


def status_breakdown(item):
    timeline_items = list(item.timeline_items)
    breakdown = {}
    for timeline in TIMELINES:
        entries = [t for t in timeline_items if t.timeline == timeline]
        breakdown[timeline] = {
            "total": len(entries),
            "completed": sum(1 for t in entries if t.status == "completed"),
            "in_progress": sum(1 for t in entries if t.status == "in_progress"),
            "blocked": sum(1 for t in entries if t.status == "blocked" or t.is_blocked),
        }
    progress = (
        round(sum(t.progress_percent or 0 for t in timeline_items) / len(timeline_items))
        if timeline_items else 0
    )
    return {
        "work_item_id": item.id,
        "status": item.status,
        "calculated_status": calculate_status(timeline_items),
        "calculated_progress": progress,
        "timeline_breakdown": breakdown,
        "total_timeline_items": len(timeline_items),
    }
