"""
Insight Service — customer insights, public submissions and voting.

Voting identity is the voter's email when given, otherwise a SHA-256 of the
client IP. A voter holds at most one vote per insight; repeating the same
vote is rejected, switching it moves one count from one side to the other.

Transaction policy: flush only; the route handler commits.
"""

import logging

from sqlalchemy import or_

from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models import db
from app.models.feedback import (
    INSIGHT_SENTIMENTS,
    INSIGHT_STATUSES,
    VOTE_TYPES,
    Insight,
    InsightVote,
)
from app.models.workspace import DEFAULT_VOTING_SETTINGS, Workspace
from app.utils.crypto import hash_ip

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "quote", "pain_point", "context", "source", "customer_name",
    "customer_segment", "sentiment", "impact_score", "frequency", "tags",
    "status", "public_share_enabled", "workspace_id",
)
PUBLIC_FEEDBACK_TAG = "public-feedback"
PUBLIC_IMPACT_SCORE = 5


def _check_fields(data: dict) -> None:
    if "title" in data and not (data["title"] or "").strip():
        raise ValidationError("title is required")
    if "sentiment" in data and data["sentiment"] not in INSIGHT_SENTIMENTS:
        raise ValidationError(f"sentiment must be one of: {', '.join(INSIGHT_SENTIMENTS)}")
    if "status" in data and data["status"] not in INSIGHT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(INSIGHT_STATUSES)}")
    if "impact_score" in data:
        score = data["impact_score"]
        if not isinstance(score, int) or not 0 <= score <= 10:
            raise ValidationError("impact_score must be an integer between 0 and 10")
    if "tags" in data and not isinstance(data["tags"], list):
        raise ValidationError("tags must be a list")


def get_insight(insight_id) -> Insight:
    insight = db.session.get(Insight, insight_id)
    if insight is None:
        raise NotFoundError("Insight", insight_id)
    return insight


def create_insight(team_id, data: dict, user_id=None) -> Insight:
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required")
    _check_fields(data)
    insight = Insight(
        team_id=team_id,
        workspace_id=data.get("workspace_id"),
        title=data["title"].strip(),
        quote=data.get("quote"),
        pain_point=data.get("pain_point"),
        context=data.get("context"),
        source=data.get("source") or "manual",
        customer_name=data.get("customer_name"),
        customer_segment=data.get("customer_segment"),
        sentiment=data.get("sentiment") or "neutral",
        impact_score=data.get("impact_score") or 0,
        frequency=data.get("frequency") or 1,
        tags=data.get("tags") or [],
        status=data.get("status") or "new",
        public_share_enabled=bool(data.get("public_share_enabled", False)),
        created_by=user_id,
    )
    db.session.add(insight)
    db.session.flush()
    logger.info("Insight %s created in team %s", insight.id, team_id)
    return insight


def update_insight(insight: Insight, data: dict) -> Insight:
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    _check_fields(data)
    for field, value in data.items():
        setattr(insight, field, value.strip() if field == "title" else value)
    db.session.flush()
    return insight


def delete_insight(insight: Insight) -> None:
    db.session.delete(insight)
    db.session.flush()


def list_insights(team_id, workspace_id=None, status=None, sentiment=None, search=None):
    query = Insight.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    if status:
        query = query.filter_by(status=status)
    if sentiment:
        query = query.filter_by(sentiment=sentiment)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(Insight.title.ilike(term), Insight.pain_point.ilike(term)))
    return query.order_by(Insight.created_at.desc(), Insight.id.desc()).all()


def get_stats(team_id, workspace_id=None) -> dict:
    insights = list_insights(team_id, workspace_id)
    by_sentiment = {s: 0 for s in INSIGHT_SENTIMENTS}
    by_status = {s: 0 for s in INSIGHT_STATUSES}
    for insight in insights:
        by_sentiment[insight.sentiment] = by_sentiment.get(insight.sentiment, 0) + 1
        by_status[insight.status] = by_status.get(insight.status, 0) + 1
    return {"total": len(insights), "by_sentiment": by_sentiment, "by_status": by_status}


# ═══════════════════════════════════════════════════════════════
# Public surface
# ═══════════════════════════════════════════════════════════════
def submit_public_feedback(workspace_id, data: dict, client_ip: str) -> Insight | None:
    """Turn an anonymous submission into a new insight.

    Returns None when the honeypot field is filled; the caller still answers
    with a success message so bots learn nothing.
    """
    if data.get("website"):
        logger.warning("Public feedback honeypot hit from %s", hash_ip(client_ip)[:12])
        return None

    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace", workspace_id)
    if not workspace.public_feedback_enabled:
        raise PermissionDeniedError("Public feedback is not enabled for this workspace")

    title = (data.get("title") or "").strip()
    description = (data.get("description") or "").strip()
    if not 3 <= len(title) <= 200:
        raise ValidationError("title must be between 3 and 200 characters")
    if not 10 <= len(description) <= 2000:
        raise ValidationError("description must be between 10 and 2000 characters")
    sentiment = data.get("sentiment") or "neutral"
    if sentiment not in INSIGHT_SENTIMENTS:
        raise ValidationError(f"sentiment must be one of: {', '.join(INSIGHT_SENTIMENTS)}")

    insight = Insight(
        team_id=workspace.team_id,
        workspace_id=workspace.id,
        title=title,
        pain_point=description,
        source="feedback",
        sentiment=sentiment,
        status="new",
        customer_name=data.get("name") or None,
        impact_score=PUBLIC_IMPACT_SCORE,
        tags=[PUBLIC_FEEDBACK_TAG],
    )
    db.session.add(insight)
    db.session.flush()
    logger.info("Public insight %s submitted to workspace %s", insight.id, workspace.id)
    return insight


def _voting_settings(workspace: Workspace | None) -> dict:
    settings = dict(DEFAULT_VOTING_SETTINGS)
    if workspace is not None and workspace.voting_settings:
        settings.update(workspace.voting_settings)
    return settings


def vote(insight: Insight, vote_type: str, client_ip: str, email: str | None = None) -> dict:
    """Record or switch a public vote.  Returns {vote_type, message}."""
    if vote_type not in VOTE_TYPES:
        raise ValidationError("vote_type must be up or down")

    workspace = db.session.get(Workspace, insight.workspace_id) if insight.workspace_id else None
    if not insight.public_share_enabled and not (workspace and workspace.public_feedback_enabled):
        raise PermissionDeniedError("Voting is not available for this insight")

    settings = _voting_settings(workspace)
    if not settings.get("enabled", True):
        raise PermissionDeniedError("Voting is disabled for this workspace")
    if not settings.get("allow_anonymous", True) and not email:
        raise ValidationError("Email is required to vote")

    ip_hash = hash_ip(client_ip)
    identity = InsightVote.voter_email == email if email else InsightVote.voter_ip_hash == ip_hash
    existing = InsightVote.query.filter(InsightVote.insight_id == insight.id, identity).first()

    if existing is not None:
        if existing.vote_type == vote_type:
            raise ValidationError("You have already voted", details={"existing_vote": vote_type})
        _adjust(insight, existing.vote_type, -1)
        _adjust(insight, vote_type, +1)
        existing.vote_type = vote_type
        db.session.flush()
        logger.info("Vote on insight %s switched to %s", insight.id, vote_type)
        return {"vote_type": vote_type, "message": "Vote updated"}

    db.session.add(InsightVote(
        insight_id=insight.id,
        vote_type=vote_type,
        voter_email=email or None,
        voter_ip_hash=ip_hash,
    ))
    _adjust(insight, vote_type, +1)
    db.session.flush()
    return {"vote_type": vote_type, "message": "Vote recorded"}


def _adjust(insight: Insight, vote_type: str, delta: int) -> None:
    field = "upvote_count" if vote_type == "up" else "downvote_count"
    setattr(insight, field, max(0, (getattr(insight, field) or 0) + delta))
