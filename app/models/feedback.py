"""
Feedback and insight models.

Feedback is raw input tied to one work item; an Insight is a synthesized,
workspace-level finding that can be shared publicly and voted on.
"""

from datetime import datetime, timezone

from app.models import db


FEEDBACK_SOURCES = {"internal", "customer", "user"}
FEEDBACK_PRIORITIES = {"high", "low"}
FEEDBACK_STATUSES = {"pending", "reviewed", "deferred", "rejected", "implemented"}
TRIAGE_DECISIONS = {
    "implement": "reviewed",
    "defer": "deferred",
    "reject": "rejected",
}

INSIGHT_SENTIMENTS = ("positive", "negative", "neutral", "mixed")
INSIGHT_STATUSES = ("new", "reviewed", "actionable", "addressed", "archived")
VOTE_TYPES = {"up", "down"}


def _utcnow():
    return datetime.now(timezone.utc)


class Feedback(db.Model):
    __tablename__ = "feedback"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source = db.Column(db.String(20), nullable=False)
    source_name = db.Column(db.String(200), nullable=False)
    source_role = db.Column(db.String(100))
    source_email = db.Column(db.String(200))
    content = db.Column(db.Text, nullable=False)
    context = db.Column(db.Text)
    priority = db.Column(db.String(10), nullable=False, default="low")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    decision_reason = db.Column(db.Text)
    decision_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    decision_at = db.Column(db.DateTime(timezone=True))
    implemented_in_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True,
    )
    received_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "work_item_id": self.work_item_id,
            "source": self.source,
            "source_name": self.source_name,
            "source_role": self.source_role,
            "source_email": self.source_email,
            "content": self.content,
            "context": self.context,
            "priority": self.priority,
            "status": self.status,
            "decision_reason": self.decision_reason,
            "decision_by": self.decision_by,
            "decision_at": self.decision_at.isoformat() if self.decision_at else None,
            "implemented_in_id": self.implemented_in_id,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Insight(db.Model):
    __tablename__ = "customer_insights"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    quote = db.Column(db.Text)
    pain_point = db.Column(db.Text)
    context = db.Column(db.Text)
    source = db.Column(db.String(50), default="manual")
    customer_name = db.Column(db.String(200))
    customer_segment = db.Column(db.String(100))
    sentiment = db.Column(db.String(20), default="neutral")
    impact_score = db.Column(db.Integer, default=0)
    frequency = db.Column(db.Integer, default=1)
    tags = db.Column(db.JSON, default=list)
    status = db.Column(db.String(20), nullable=False, default="new", index=True)
    public_share_enabled = db.Column(db.Boolean, default=False)
    upvote_count = db.Column(db.Integer, default=0)
    downvote_count = db.Column(db.Integer, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    votes = db.relationship(
        "InsightVote", backref="insight", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "title": self.title,
            "quote": self.quote,
            "pain_point": self.pain_point,
            "context": self.context,
            "source": self.source,
            "customer_name": self.customer_name,
            "customer_segment": self.customer_segment,
            "sentiment": self.sentiment,
            "impact_score": self.impact_score,
            "frequency": self.frequency,
            "tags": self.tags or [],
            "status": self.status,
            "public_share_enabled": self.public_share_enabled,
            "upvote_count": self.upvote_count,
            "downvote_count": self.downvote_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class InsightVote(db.Model):
    """One vote per voter identity (email or hashed IP) per insight."""

    __tablename__ = "insight_votes"

    id = db.Column(db.Integer, primary_key=True)
    insight_id = db.Column(
        db.Integer, db.ForeignKey("customer_insights.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    vote_type = db.Column(db.String(4), nullable=False)
    voter_email = db.Column(db.String(200))
    voter_ip_hash = db.Column(db.String(64))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "insight_id": self.insight_id,
            "vote_type": self.vote_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
