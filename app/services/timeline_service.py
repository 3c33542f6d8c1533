"""Timeline service layer — phase breakdown (MVP / SHORT / LONG) of work items.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

A work item holds at most one timeline item per timeline; the check is made
here at insert time.  Links between timeline items are directed rows in
``timeline_item_links``.
"""
import logging
from datetime import datetime, timezone

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.work_item import (
    DIFFICULTIES,
    LINK_RELATIONSHIPS,
    TIMELINE_PHASES,
    TIMELINE_STATUSES,
    TIMELINES,
    TimelineItem,
    TimelineItemLink,
)
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name", "description", "timeline", "difficulty", "category", "phase", "status",
    "progress_percent", "is_blocked", "estimated_hours", "start_date", "end_date",
)


def validate_timeline_item(data):
    """Return {valid, errors} without touching the database."""
    errors = []
    if not (data.get("name") or "").strip():
        errors.append("Timeline item name is required")
    if data.get("timeline") not in TIMELINES:
        errors.append("Valid timeline is required (MVP, SHORT, or LONG)")
    if (data.get("difficulty") or "").lower() not in DIFFICULTIES:
        errors.append("Valid difficulty is required (easy, medium, or hard)")
    return {"valid": not errors, "errors": errors}


def _check_fields(data):
    if "timeline" in data and data["timeline"] not in TIMELINES:
        raise ValidationError(f"timeline must be one of: {', '.join(TIMELINES)}")
    if "difficulty" in data and (data["difficulty"] or "").lower() not in DIFFICULTIES:
        raise ValidationError(f"difficulty must be one of: {', '.join(sorted(DIFFICULTIES))}")
    if "phase" in data and data["phase"] not in TIMELINE_PHASES:
        raise ValidationError(f"phase must be one of: {', '.join(sorted(TIMELINE_PHASES))}")
    if "status" in data and data["status"] not in TIMELINE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(TIMELINE_STATUSES))}")
    progress = data.get("progress_percent")
    if progress is not None:
        if not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("progress_percent must be an integer between 0 and 100")


def _occupied(work_item, exclude_id=None):
    return {t.timeline for t in work_item.timeline_items if t.id != exclude_id}


def _touch(work_item):
    work_item.updated_at = datetime.now(timezone.utc)


def add_item(work_item, data):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Timeline item name is required")
    if data.get("timeline") not in TIMELINES:
        raise ValidationError(f"timeline must be one of: {', '.join(TIMELINES)}")
    _check_fields(data)
    if data["timeline"] in _occupied(work_item):
        raise ConflictError("Timeline item", "timeline", data["timeline"])

    item = TimelineItem(
        work_item_id=work_item.id,
        team_id=work_item.team_id,
        timeline=data["timeline"],
        name=name,
        description=data.get("description") or "",
        difficulty=(data.get("difficulty") or "medium").lower(),
        category=list(data.get("category") or []),
        phase=data.get("phase") or "planning",
        status=data.get("status") or "not_started",
        progress_percent=data.get("progress_percent") or 0,
        is_blocked=bool(data.get("is_blocked", False)),
        estimated_hours=data.get("estimated_hours"),
        start_date=parse_date(data.get("start_date")) if data.get("start_date") else None,
        end_date=parse_date(data.get("end_date")) if data.get("end_date") else None,
        sort_order=len(work_item.timeline_items),
    )
    work_item.timeline_items.append(item)
    _touch(work_item)
    db.session.flush()
    logger.info("Timeline item %s (%s) added to work item %s", item.id, item.timeline, work_item.id)
    return item


def update_item(item, data):
    """Partial merge; ``id`` and ``created_at`` are ignored."""
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    if "name" in data and not (data["name"] or "").strip():
        raise ValidationError("Timeline item name is required")
    _check_fields(data)
    if "timeline" in data and data["timeline"] in _occupied(item.work_item, exclude_id=item.id):
        raise ConflictError("Timeline item", "timeline", data["timeline"])

    for field, value in data.items():
        if field in ("start_date", "end_date"):
            value = parse_date(value) if value else None
        elif field == "difficulty":
            value = value.lower()
        elif field == "name":
            value = value.strip()
        setattr(item, field, value)
    _touch(item.work_item)
    db.session.flush()
    return item


def delete_item(item):
    """Delete a timeline item together with every link to or from it."""
    work_item = item.work_item
    TimelineItemLink.query.filter(
        (TimelineItemLink.source_id == item.id) | (TimelineItemLink.target_id == item.id)
    ).delete(synchronize_session=False)
    work_item.timeline_items.remove(item)
    db.session.delete(item)
    for index, remaining in enumerate(work_item.timeline_items):
        remaining.sort_order = index
    _touch(work_item)
    db.session.flush()


def get_item(work_item, item_id):
    for item in work_item.timeline_items:
        if item.id == item_id:
            return item
    raise NotFoundError("Timeline item", item_id)


def list_items(work_item, timeline=None, difficulty=None):
    items = list(work_item.timeline_items)
    if timeline:
        items = [i for i in items if i.timeline == timeline]
    if difficulty:
        items = [i for i in items if i.difficulty == difficulty.lower()]
    return items


def get_stats(work_item):
    items = list(work_item.timeline_items)
    stats = {
        "total": len(items),
        "by_timeline": {t: 0 for t in TIMELINES},
        "by_difficulty": {d: 0 for d in ("easy", "medium", "hard")},
        "total_links": 0,
    }
    for item in items:
        if item.timeline in stats["by_timeline"]:
            stats["by_timeline"][item.timeline] += 1
        if item.difficulty in stats["by_difficulty"]:
            stats["by_difficulty"][item.difficulty] += 1
        stats["total_links"] += item.outgoing_links.count()
    return stats


def reorder(work_item, item_id, new_index):
    """Move one item to ``new_index`` and renumber sort_order."""
    items = list(work_item.timeline_items)
    item = get_item(work_item, item_id)
    if not isinstance(new_index, int) or new_index < 0:
        raise ValidationError("new_index must be a non-negative integer")
    items.remove(item)
    items.insert(min(new_index, len(items)), item)
    for index, entry in enumerate(items):
        entry.sort_order = index
    db.session.flush()
    db.session.expire(work_item, ["timeline_items"])
    return list(work_item.timeline_items)


def duplicate_item(item):
    """Copy into the next free timeline slot; links are not copied."""
    work_item = item.work_item
    free = [t for t in TIMELINES if t not in _occupied(work_item)]
    if not free:
        raise ConflictError(
            "Timeline item", "timeline",
            message="Every timeline already has an item for this work item",
        )
    copy = TimelineItem(
        work_item_id=work_item.id,
        team_id=item.team_id,
        timeline=free[0],
        name=f"{item.name} (Copy)",
        description=item.description,
        difficulty=item.difficulty,
        category=list(item.category or []),
        phase=item.phase,
        estimated_hours=item.estimated_hours,
        sort_order=len(work_item.timeline_items),
    )
    work_item.timeline_items.append(copy)
    _touch(work_item)
    db.session.flush()
    logger.info("Timeline item %s duplicated as %s (%s)", item.id, copy.id, copy.timeline)
    return copy


# ── Links ────────────────────────────────────────────────────────────────────


def create_link(source, target_id, relationship_type="relates_to", reason=""):
    if relationship_type not in LINK_RELATIONSHIPS:
        raise ValidationError(
            f"relationship_type must be one of: {', '.join(sorted(LINK_RELATIONSHIPS))}"
        )
    target = db.session.get(TimelineItem, target_id)
    if target is None or target.team_id != source.team_id:
        raise NotFoundError("Timeline item", target_id)
    if target.id == source.id:
        raise ValidationError("Cannot link a timeline item to itself")

    existing = TimelineItemLink.query.filter_by(source_id=source.id, target_id=target.id).first()
    if existing:
        raise ConflictError("Timeline link", "target_id", target.id, message="Link already exists")

    link = TimelineItemLink(
        source_id=source.id,
        target_id=target.id,
        relationship_type=relationship_type,
        reason=reason or "",
    )
    db.session.add(link)
    db.session.flush()
    return link


def delete_link(source, target_id):
    deleted = TimelineItemLink.query.filter_by(
        source_id=source.id, target_id=target_id,
    ).delete(synchronize_session=False)
    if not deleted:
        raise NotFoundError("Timeline link")
    db.session.flush()


def incoming_links(item):
    return TimelineItemLink.query.filter_by(target_id=item.id).all()
