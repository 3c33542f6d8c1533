"""
Work item domain models.

Models:
    - WorkItem: feature / bug / concept / enhancement tracked in a workspace
    - TimelineItem: phase breakdown of a work item (one per MVP / SHORT / LONG)
    - TimelineItemLink: typed link between two timeline items
    - WorkItemConnection: directed, typed edge between work items
    - FeatureImportanceScore: persisted importance score per work item

Architecture chain: Workspace → WorkItem → TimelineItem
                    WorkItem ──WorkItemConnection──▶ WorkItem
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ITEM_TYPES = {"concept", "feature", "bug", "enhancement"}
WORK_ITEM_STATUSES = {"not_started", "in_progress", "on_hold", "blocked", "completed"}
PRIORITY_LEVELS = {"critical", "high", "medium", "low"}
HEALTH_STATUSES = {"on_track", "at_risk", "off_track"}
WORKFLOW_STAGES = ("ideation", "planning", "execution", "completed")

TIMELINES = ("MVP", "SHORT", "LONG")
DIFFICULTIES = {"easy", "medium", "hard"}
TIMELINE_PHASES = {"research", "planning", "execution", "review", "complete"}
TIMELINE_STATUSES = {"not_started", "in_progress", "completed", "blocked", "on_hold"}
LINK_RELATIONSHIPS = {"dependency", "blocks", "complements", "relates_to"}

CONNECTION_TYPES = {
    "dependency", "blocks", "enables", "complements",
    "conflicts", "relates_to", "duplicates", "supersedes",
}
BIDIRECTIONAL_CONNECTION_TYPES = {"complements", "conflicts", "relates_to"}
CONNECTION_STATUSES = {"active", "inactive", "rejected"}

# List-valued fields stored as JSON
LIST_FIELDS = (
    "tags", "success_metrics", "acceptance_criteria", "definition_of_done",
    "execution_steps", "milestones", "risks", "blockers", "stakeholders",
    "inspiration_items", "contributors",
)


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  WORK ITEM
# ═══════════════════════════════════════════════════════════════════════════

class WorkItem(db.Model):
    """A unit of product work, the node type of the dependency graph."""

    __tablename__ = "work_items"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    strategy_id = db.Column(
        db.Integer, db.ForeignKey("product_strategies.id", ondelete="SET NULL"), nullable=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True,
    )
    is_epic = db.Column(db.Boolean, default=False)

    name = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(20), nullable=False, default="feature")
    purpose = db.Column(db.Text, default="")
    usp = db.Column(db.Text, default="")
    customer_impact = db.Column(db.Text, default="")
    category = db.Column(db.String(100), default="")
    owner = db.Column(db.String(150), default="")

    status = db.Column(db.String(20), nullable=False, default="not_started", index=True)
    priority = db.Column(db.String(20), nullable=False, default="medium")
    health = db.Column(db.String(20), nullable=False, default="on_track")
    business_value = db.Column(db.String(20), default="medium")
    workflow_stage = db.Column(db.String(20), default="ideation")
    stage_history = db.Column(db.JSON, default=list)

    estimated_hours = db.Column(db.Float, nullable=True)
    story_points = db.Column(db.Integer, nullable=True)
    duration_days = db.Column(db.Float, nullable=True)
    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    progress_percent = db.Column(db.Integer, default=0)

    tags = db.Column(db.JSON, default=list)
    success_metrics = db.Column(db.JSON, default=list)
    acceptance_criteria = db.Column(db.JSON, default=list)
    definition_of_done = db.Column(db.JSON, default=list)
    execution_steps = db.Column(db.JSON, default=list)
    milestones = db.Column(db.JSON, default=list)
    risks = db.Column(db.JSON, default=list)
    blockers = db.Column(db.JSON, default=list)
    stakeholders = db.Column(db.JSON, default=list)
    inspiration_items = db.Column(db.JSON, default=list)
    contributors = db.Column(db.JSON, default=list)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    timeline_items = db.relationship(
        "TimelineItem", back_populates="work_item", cascade="all, delete-orphan",
        order_by="TimelineItem.sort_order",
    )
    children = db.relationship("WorkItem", backref=db.backref("parent", remote_side=[id]))

    def to_dict(self, include_timeline=False):
        d = {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "department_id": self.department_id,
            "strategy_id": self.strategy_id,
            "parent_id": self.parent_id,
            "is_epic": self.is_epic,
            "name": self.name,
            "type": self.type,
            "purpose": self.purpose,
            "usp": self.usp,
            "customer_impact": self.customer_impact,
            "category": self.category,
            "owner": self.owner,
            "status": self.status,
            "priority": self.priority,
            "health": self.health,
            "business_value": self.business_value,
            "workflow_stage": self.workflow_stage,
            "stage_history": self.stage_history or [],
            "estimated_hours": self.estimated_hours,
            "story_points": self.story_points,
            "duration_days": self.duration_days,
            "planned_start_date": _iso(self.planned_start_date),
            "planned_end_date": _iso(self.planned_end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "progress_percent": self.progress_percent,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        for field in LIST_FIELDS:
            d[field] = getattr(self, field) or []
        if include_timeline:
            d["timeline_items"] = [t.to_dict() for t in self.timeline_items]
        return d

    def to_graph_node(self):
        """Shape consumed by app.services.graph_analysis and importance scoring."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "workflow_stage": self.workflow_stage,
            "business_value": self.business_value,
            "estimated_hours": self.estimated_hours,
            "timeline_items": [{"difficulty": t.difficulty} for t in self.timeline_items],
        }


# ═══════════════════════════════════════════════════════════════════════════
#  TIMELINE ITEM
# ═══════════════════════════════════════════════════════════════════════════

class TimelineItem(db.Model):
    """
    Phase breakdown of a work item.

    Uniqueness of (work_item_id, timeline) is enforced by timeline_service at
    insert time.
    """

    __tablename__ = "timeline_items"

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    timeline = db.Column(db.String(10), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    difficulty = db.Column(db.String(10), nullable=False, default="medium")
    category = db.Column(db.JSON, default=list)
    phase = db.Column(db.String(20), default="planning")
    status = db.Column(db.String(20), default="not_started")
    progress_percent = db.Column(db.Integer, default=0)
    is_blocked = db.Column(db.Boolean, default=False)
    estimated_hours = db.Column(db.Float, nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    work_item = db.relationship("WorkItem", back_populates="timeline_items")
    outgoing_links = db.relationship(
        "TimelineItemLink", foreign_keys="TimelineItemLink.source_id",
        cascade="all, delete-orphan", lazy="dynamic",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "team_id": self.team_id,
            "timeline": self.timeline,
            "name": self.name,
            "description": self.description,
            "difficulty": self.difficulty,
            "category": self.category or [],
            "phase": self.phase,
            "status": self.status,
            "progress_percent": self.progress_percent,
            "is_blocked": self.is_blocked,
            "estimated_hours": self.estimated_hours,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "sort_order": self.sort_order,
            "linked_items": [link.to_dict() for link in self.outgoing_links],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class TimelineItemLink(db.Model):
    __tablename__ = "timeline_item_links"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(
        db.Integer, db.ForeignKey("timeline_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    target_id = db.Column(
        db.Integer, db.ForeignKey("timeline_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    relationship_type = db.Column(db.String(20), nullable=False, default="relates_to")
    reason = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relationship_type": self.relationship_type,
            "reason": self.reason,
        }


# ═══════════════════════════════════════════════════════════════════════════
#  CONNECTION
# ═══════════════════════════════════════════════════════════════════════════

class WorkItemConnection(db.Model):
    """Directed, typed edge between two work items of the same workspace."""

    __tablename__ = "work_item_connections"

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    target_work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    connection_type = db.Column(db.String(20), nullable=False)
    is_bidirectional = db.Column(db.Boolean, default=False)
    strength = db.Column(db.Float, default=1.0)
    confidence = db.Column(db.Float, default=1.0)
    reason = db.Column(db.Text, default="")
    discovered_by = db.Column(db.String(20), default="user", comment="user / ai / system")
    status = db.Column(db.String(20), nullable=False, default="active", index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "source_work_item_id": self.source_work_item_id,
            "target_work_item_id": self.target_work_item_id,
            "connection_type": self.connection_type,
            "is_bidirectional": self.is_bidirectional,
            "strength": self.strength,
            "confidence": self.confidence,
            "reason": self.reason,
            "discovered_by": self.discovered_by,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def to_graph_edge(self):
        """Shape consumed by app.services.graph_analysis."""
        return {
            "source": self.source_work_item_id,
            "target": self.target_work_item_id,
            "type": self.connection_type,
            "strength": self.strength,
            "status": self.status,
        }


# ═══════════════════════════════════════════════════════════════════════════
#  IMPORTANCE SCORE
# ═══════════════════════════════════════════════════════════════════════════

class FeatureImportanceScore(db.Model):
    """One row per work item; upserted by importance_service."""

    __tablename__ = "feature_importance_scores"

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    overall_score = db.Column(db.Float, default=0.0, index=True)
    dependency_score = db.Column(db.Float, default=0.0)
    blocking_score = db.Column(db.Float, default=0.0)
    connection_score = db.Column(db.Float, default=0.0)
    business_value_score = db.Column(db.Float, default=0.0)
    priority_score = db.Column(db.Float, default=0.0)
    workflow_score = db.Column(db.Float, default=0.0)
    complexity_score = db.Column(db.Float, default=0.0)
    incoming_dependency_count = db.Column(db.Integer, default=0)
    outgoing_dependency_count = db.Column(db.Integer, default=0)
    total_connection_count = db.Column(db.Integer, default=0)
    blocking_count = db.Column(db.Integer, default=0)
    calculation_weights = db.Column(db.JSON, default=dict)
    workspace_rank = db.Column(db.Integer, nullable=True)
    percentile = db.Column(db.Integer, nullable=True)
    is_on_critical_path = db.Column(db.Boolean, default=False)
    is_bottleneck = db.Column(db.Boolean, default=False)
    calculated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "work_item_id": self.work_item_id,
            "workspace_id": self.workspace_id,
            "overall_score": self.overall_score,
            "component_scores": {
                "dependency": self.dependency_score,
                "blocking": self.blocking_score,
                "connection": self.connection_score,
                "business_value": self.business_value_score,
                "priority": self.priority_score,
                "workflow": self.workflow_score,
                "complexity": self.complexity_score,
            },
            "metrics": {
                "incoming_dependencies": self.incoming_dependency_count,
                "outgoing_dependencies": self.outgoing_dependency_count,
                "total_connections": self.total_connection_count,
                "blocking_count": self.blocking_count,
            },
            "workspace_rank": self.workspace_rank,
            "percentile": self.percentile,
            "is_on_critical_path": self.is_on_critical_path,
            "is_bottleneck": self.is_bottleneck,
            "calculated_at": _iso(self.calculated_at),
        }
