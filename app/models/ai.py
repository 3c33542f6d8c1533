"""
AI domain models.

Models:
    - AIUsageLog: token/cost tracking per LLM call
    - AIAuditLog: audit trail for every AI invocation
    - AIActionHistory: agent tool executions with approval and rollback state
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AI_PROVIDERS = {"anthropic", "openai", "local"}

SONNET_MODEL = "claude-3-5-sonnet-20241022"
HAIKU_MODEL = "claude-3-haiku-20240307"

# Token costs per 1M tokens (input/output)
TOKEN_COSTS = {
    SONNET_MODEL:              {"input": 3.00, "output": 15.00},
    HAIKU_MODEL:               {"input": 0.25, "output": 1.25},
    "claude-3-5-haiku-20241022": {"input": 1.00, "output": 5.00},
    "gpt-4o-mini":             {"input": 0.15, "output": 0.60},
    "gpt-4o":                  {"input": 2.50, "output": 10.00},
    "local-stub":              {"input": 0.00, "output": 0.00},
}

ACTION_STATUSES = {
    "pending", "approved", "executing", "completed", "failed", "rolled_back", "cancelled",
}
TOOL_CATEGORIES = {"creation", "analysis", "optimization", "strategy"}
ACTION_TYPES = {"create", "update", "delete", "analyze", "suggest"}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate USD cost for a given model + token counts."""
    costs = TOKEN_COSTS.get(model, {"input": 0.0, "output": 0.0})
    return (prompt_tokens * costs["input"] + completion_tokens * costs["output"]) / 1_000_000


def _utcnow():
    return datetime.now(timezone.utc)


# ── AIUsageLog ────────────────────────────────────────────────────────────────

class AIUsageLog(db.Model):
    """
    Tracks token usage and cost for every LLM API call.
    Aggregated by the cost manager for workspace and user budgets.
    """

    __tablename__ = "ai_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(30), nullable=False, comment="anthropic / openai / local")
    model = db.Column(db.String(80), nullable=False)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    total_tokens = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    purpose = db.Column(db.String(100), default="", comment="e.g. field_enhancement, agent")

    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 6),
            "latency_ms": self.latency_ms,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "work_item_id": self.work_item_id,
            "purpose": self.purpose,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ── AIAuditLog ────────────────────────────────────────────────────────────────

class AIAuditLog(db.Model):
    """Audit trail for every AI operation."""

    __tablename__ = "ai_audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, comment="llm_call, agent_execute, ...")
    provider = db.Column(db.String(30), default="")
    model = db.Column(db.String(80), default="")

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    prompt_hash = db.Column(db.String(64), default="", comment="SHA-256 of prompt")
    prompt_summary = db.Column(db.String(500), default="")

    tokens_used = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0)
    response_summary = db.Column(db.String(500), default="")

    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "provider": self.provider,
            "model": self.model,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "prompt_summary": self.prompt_summary,
            "tokens_used": self.tokens_used,
            "cost_usd": round(self.cost_usd, 6),
            "latency_ms": self.latency_ms,
            "response_summary": self.response_summary,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ── AIActionHistory ───────────────────────────────────────────────────────────

class AIActionHistory(db.Model):
    """
    One agent tool invocation.

    Lifecycle:
        pending → approved → executing → completed | failed
        completed → rolled_back   (reversible tools only)
        pending → cancelled
    """

    __tablename__ = "ai_action_history"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)

    tool_name = db.Column(db.String(80), nullable=False)
    tool_category = db.Column(db.String(20), nullable=False)
    action_type = db.Column(db.String(20), nullable=False)
    input_params = db.Column(db.JSON, default=dict)
    output_result = db.Column(db.JSON, nullable=True)
    affected_items = db.Column(db.JSON, default=list)
    rollback_data = db.Column(db.JSON, nullable=True)
    is_reversible = db.Column(db.Boolean, default=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    error_message = db.Column(db.Text, nullable=True)

    execution_started_at = db.Column(db.DateTime(timezone=True))
    execution_completed_at = db.Column(db.DateTime(timezone=True))
    execution_duration_ms = db.Column(db.Integer)
    tokens_used = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    model_used = db.Column(db.String(80))

    approved_at = db.Column(db.DateTime(timezone=True))
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    rolled_back_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        def _iso(v):
            return v.isoformat() if v else None

        return {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "tool_category": self.tool_category,
            "action_type": self.action_type,
            "input_params": self.input_params or {},
            "output_result": self.output_result,
            "affected_items": self.affected_items or [],
            "is_reversible": self.is_reversible,
            "status": self.status,
            "error_message": self.error_message,
            "execution_started_at": _iso(self.execution_started_at),
            "execution_completed_at": _iso(self.execution_completed_at),
            "execution_duration_ms": self.execution_duration_ms,
            "tokens_used": self.tokens_used,
            "cost_usd": self.cost_usd,
            "model_used": self.model_used,
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "rolled_back_at": _iso(self.rolled_back_at),
            "created_at": _iso(self.created_at),
        }
