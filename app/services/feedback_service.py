"""
Feedback Service — intake, triage and conversion of work item feedback.

Customer feedback is auto-prioritized high; everything else starts low.
Triage moves pending feedback to reviewed/deferred/rejected; conversion
spawns a new work item and marks the feedback implemented.

Transaction policy: flush only; the route handler commits.
"""

import logging
from datetime import datetime, timezone

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.feedback import (
    FEEDBACK_PRIORITIES,
    FEEDBACK_SOURCES,
    FEEDBACK_STATUSES,
    TRIAGE_DECISIONS,
    Feedback,
)
from app.models.work_item import WORK_ITEM_TYPES, WorkItem
from app.models.workspace import Workspace
from app.services import work_item_service
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("content", "context", "priority", "status", "source_role", "source_email")


def default_priority(source: str) -> str:
    return "high" if source == "customer" else "low"


def get_feedback(feedback_id) -> Feedback:
    feedback = db.session.get(Feedback, feedback_id)
    if feedback is None:
        raise NotFoundError("Feedback", feedback_id)
    return feedback


def create_feedback(work_item: WorkItem, data: dict, notify_email: str | None = None) -> Feedback:
    source = data.get("source")
    if source not in FEEDBACK_SOURCES:
        raise ValidationError(f"source must be one of: {', '.join(sorted(FEEDBACK_SOURCES))}")
    if not (data.get("source_name") or "").strip():
        raise ValidationError("source_name is required")
    if not (data.get("content") or "").strip():
        raise ValidationError("content is required")
    priority = data.get("priority") or default_priority(source)
    if priority not in FEEDBACK_PRIORITIES:
        raise ValidationError("priority must be high or low")

    feedback = Feedback(
        team_id=work_item.team_id,
        workspace_id=work_item.workspace_id,
        work_item_id=work_item.id,
        source=source,
        source_name=data["source_name"].strip(),
        source_role=data.get("source_role"),
        source_email=data.get("source_email"),
        content=data["content"].strip(),
        context=data.get("context"),
        priority=priority,
        status="pending",
    )
    db.session.add(feedback)
    db.session.flush()
    logger.info("Feedback %s (%s, %s) recorded on work item %s",
                feedback.id, source, priority, work_item.id)

    if notify_email:
        EmailService.send_from_template(
            to_email=notify_email,
            template_name="feedback_received",
            context={
                "work_item_name": work_item.name,
                "source": source,
                "source_name": feedback.source_name,
                "content": feedback.content,
            },
        )
    return feedback


def list_feedback(team_id, workspace_id=None, work_item_id=None, status=None,
                  source=None, priority=None) -> list[Feedback]:
    query = Feedback.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    if work_item_id is not None:
        query = query.filter_by(work_item_id=work_item_id)
    if status:
        query = query.filter_by(status=status)
    if source:
        query = query.filter_by(source=source)
    if priority:
        query = query.filter_by(priority=priority)
    return query.order_by(Feedback.received_at.desc(), Feedback.id.desc()).all()


def update_feedback(feedback: Feedback, data: dict) -> Feedback:
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    if "priority" in data and data["priority"] not in FEEDBACK_PRIORITIES:
        raise ValidationError("priority must be high or low")
    if "status" in data and data["status"] not in FEEDBACK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(FEEDBACK_STATUSES))}")
    if "content" in data and not (data["content"] or "").strip():
        raise ValidationError("content is required")
    for field, value in data.items():
        setattr(feedback, field, value)
    db.session.flush()
    return feedback


def delete_feedback(feedback: Feedback) -> None:
    db.session.delete(feedback)
    db.session.flush()


def triage(feedback: Feedback, decision: str, reason: str | None = None, user_id=None) -> Feedback:
    """Apply a triage decision: implement → reviewed, defer → deferred, reject → rejected."""
    status = TRIAGE_DECISIONS.get(decision)
    if status is None:
        raise ValidationError(f"decision must be one of: {', '.join(TRIAGE_DECISIONS)}")
    if decision == "reject" and not (reason or "").strip():
        raise ValidationError("A reason is required when rejecting feedback")

    feedback.status = status
    feedback.decision_reason = reason
    feedback.decision_by = user_id
    feedback.decision_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info("Feedback %s triaged: %s", feedback.id, decision)
    return feedback


def convert_to_work_item(feedback: Feedback, data: dict, user_id=None) -> tuple[Feedback, WorkItem]:
    """Create a work item from feedback and mark the feedback implemented."""
    item_type = data.get("work_item_type")
    if item_type not in WORK_ITEM_TYPES:
        raise ValidationError("work_item_type must be concept, feature, bug, or enhancement")
    if not (data.get("work_item_name") or "").strip():
        raise ValidationError("work_item_name is required")

    workspace = db.session.get(Workspace, feedback.workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace", feedback.workspace_id)

    work_item = work_item_service.create_work_item(
        workspace,
        {
            "name": data["work_item_name"],
            "type": item_type,
            "purpose": data.get("work_item_purpose") or feedback.content,
        },
        user_id=user_id,
    )
    feedback.implemented_in_id = work_item.id
    feedback.status = "implemented"
    db.session.flush()
    logger.info("Feedback %s converted into work item %s", feedback.id, work_item.id)
    return feedback, work_item


def get_stats(team_id, workspace_id=None) -> dict:
    items = list_feedback(team_id, workspace_id)
    by_status = {s: 0 for s in sorted(FEEDBACK_STATUSES)}
    by_source = {s: 0 for s in sorted(FEEDBACK_SOURCES)}
    by_priority = {p: 0 for p in sorted(FEEDBACK_PRIORITIES)}
    for f in items:
        by_status[f.status] = by_status.get(f.status, 0) + 1
        by_source[f.source] = by_source.get(f.source, 0) + 1
        by_priority[f.priority] = by_priority.get(f.priority, 0) + 1
    return {
        "total": len(items),
        "by_status": by_status,
        "by_source": by_source,
        "by_priority": by_priority,
    }
