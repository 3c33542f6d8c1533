"""
Workspace domain models.

Models:
    - Workspace: container for work items, strategies, feedback and insights
    - Department: team-level grouping for work items
    - WorkspaceTemplate: reusable bundle of departments, work items and tags

Architecture chain: Team → Workspace → WorkItem → TimelineItem
"""

import copy
import re
from datetime import datetime, timezone

from app.models import db


WORKSPACE_PHASES = {"research", "planning", "execution", "review", "complete"}

DEFAULT_WORKSPACE_COLOR = "#3b82f6"
DEFAULT_WORKSPACE_ICON = "📊"
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

DEFAULT_WORKFLOW_CONFIG = {
    "enable_ideation_stage": True,
    "enable_planning_stage": True,
    "enable_execution_stage": True,
    "auto_advance_stages": False,
    "show_stage_guides": True,
    "stage_requirements": {
        "ideation": ["inspiration_items", "risks"],
        "planning": ["execution_steps", "milestones"],
        "execution": ["status", "progress"],
    },
}

DEFAULT_VOTING_SETTINGS = {
    "enabled": True,
    "require_email_verification": False,
    "allow_anonymous": True,
}


def default_workflow_config():
    return copy.deepcopy(DEFAULT_WORKFLOW_CONFIG)


def _utcnow():
    return datetime.now(timezone.utc)


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    phase = db.Column(db.String(20), default="research")
    color = db.Column(db.String(7), default=DEFAULT_WORKSPACE_COLOR)
    icon = db.Column(db.String(20), default=DEFAULT_WORKSPACE_ICON)
    custom_instructions = db.Column(db.Text, default="")
    ai_memory = db.Column(db.JSON, default=list)
    workflow_mode_enabled = db.Column(db.Boolean, default=False)
    workflow_config = db.Column(db.JSON, default=default_workflow_config)
    public_feedback_enabled = db.Column(db.Boolean, default=False)
    voting_settings = db.Column(db.JSON, default=lambda: dict(DEFAULT_VOTING_SETTINGS))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    work_items = db.relationship(
        "WorkItem", backref="workspace", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self, include_counts=False):
        d = {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "description": self.description,
            "phase": self.phase,
            "color": self.color,
            "icon": self.icon,
            "custom_instructions": self.custom_instructions,
            "ai_memory": self.ai_memory or [],
            "workflow_mode_enabled": self.workflow_mode_enabled,
            "workflow_config": self.workflow_config or {},
            "public_feedback_enabled": self.public_feedback_enabled,
            "voting_settings": self.voting_settings or dict(DEFAULT_VOTING_SETTINGS),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_counts:
            d["work_item_count"] = self.work_items.count()
        return d


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    color = db.Column(db.String(7), default="#6366f1")
    icon = db.Column(db.String(40), default="folder")
    is_default = db.Column(db.Boolean, default=False)
    sort_order = db.Column(db.Integer, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "is_default": self.is_default,
            "sort_order": self.sort_order,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class WorkspaceTemplate(db.Model):
    """
    Template payload (``template_data``) shape:
        {"departments": [{name, color, icon}],
         "work_items": [{name, type, purpose, priority, department}],
         "tags": [str]}
    System templates have no team and are visible to everyone.
    """

    __tablename__ = "workspace_templates"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(50), default="general")
    icon = db.Column(db.String(40), default="layout-template")
    is_system = db.Column(db.Boolean, default=False)
    template_data = db.Column(db.JSON, default=dict)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        data = self.template_data or {}
        return {
            "id": self.id,
            "team_id": self.team_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "is_system": self.is_system,
            "template_data": data,
            "department_count": len(data.get("departments", [])),
            "work_item_count": len(data.get("work_items", [])),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
