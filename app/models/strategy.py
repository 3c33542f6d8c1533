"""
Strategy models — OKR-style hierarchy and work item alignment.

Hierarchy: Pillar → Objective → Key Result → Initiative
A work item has one primary strategy (WorkItem.strategy_id) and any number of
secondary alignments through WorkItemStrategy.
"""

from datetime import datetime, timezone

from app.models import db


STRATEGY_TYPES = ("pillar", "objective", "key_result", "initiative")
STRATEGY_TYPE_ORDER = {t: i for i, t in enumerate(STRATEGY_TYPES)}
STRATEGY_TYPE_LABELS = {
    "pillar": "Pillar",
    "objective": "Objective",
    "key_result": "Key Result",
    "initiative": "Initiative",
}
STRATEGY_STATUSES = {"draft", "active", "on_hold", "completed", "cancelled"}
PROGRESS_MODES = {"manual", "auto"}
ALIGNMENT_STRENGTHS = {"weak", "medium", "strong"}


def _utcnow():
    return datetime.now(timezone.utc)


class Strategy(db.Model):
    __tablename__ = "product_strategies"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("product_strategies.id", ondelete="CASCADE"), nullable=True,
    )
    type = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="draft")
    progress = db.Column(db.Integer, default=0)
    calculated_progress = db.Column(db.Integer, nullable=True)
    progress_mode = db.Column(db.String(10), default="manual")
    metric_name = db.Column(db.String(200))
    metric_current = db.Column(db.Float)
    metric_target = db.Column(db.Float)
    metric_unit = db.Column(db.String(30))
    start_date = db.Column(db.Date)
    target_date = db.Column(db.Date)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    color = db.Column(db.String(7), default="#6366f1")
    sort_order = db.Column(db.Integer, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    children = db.relationship(
        "Strategy", backref=db.backref("parent", remote_side=[id]),
        cascade="all, delete-orphan", order_by="Strategy.sort_order",
    )

    @property
    def effective_progress(self):
        if self.progress_mode == "auto" and self.calculated_progress is not None:
            return self.calculated_progress
        return self.progress or 0

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "parent_id": self.parent_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "progress": self.progress,
            "calculated_progress": self.calculated_progress,
            "progress_mode": self.progress_mode,
            "effective_progress": self.effective_progress,
            "metric_name": self.metric_name,
            "metric_current": self.metric_current,
            "metric_target": self.metric_target,
            "metric_unit": self.metric_unit,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "owner_id": self.owner_id,
            "color": self.color,
            "sort_order": self.sort_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            d["children"] = [c.to_dict(include_children=True) for c in self.children]
        return d


class WorkItemStrategy(db.Model):
    """Secondary alignment of a work item to a strategy."""

    __tablename__ = "work_item_strategies"

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    strategy_id = db.Column(
        db.Integer, db.ForeignKey("product_strategies.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    alignment_strength = db.Column(db.String(10), default="medium")
    notes = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("work_item_id", "strategy_id", name="uq_work_item_strategy"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "strategy_id": self.strategy_id,
            "alignment_strength": self.alignment_strength,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
