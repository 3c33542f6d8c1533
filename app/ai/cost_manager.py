"""
Product Workspace Platform
AI Cost Manager — budgets and rate limits over recorded AI usage.

Budgets (USD):
    per field       0.05  per single generation
    per work item   0.50  lifetime
    per workspace  10.00  per UTC day   (AI_BUDGET_PER_WORKSPACE_DAILY)
    per user       50.00  per UTC month (AI_BUDGET_PER_USER_MONTHLY)

Rate limits (per user, rolling windows):
    10 requests/minute, 100 requests/hour,
    50k tokens/minute, 200k tokens/hour

All figures are computed from AIUsageLog rows; nothing is cached in memory.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import func

from app.models import db
from app.models.ai import TOKEN_COSTS, AIUsageLog

logger = logging.getLogger(__name__)

DEFAULT_BUDGETS = {
    "per_field": 0.05,
    "per_work_item": 0.50,
    "per_workspace_daily": 10.00,
    "per_user_monthly": 50.00,
}

RATE_LIMITS = {
    "requests_per_minute": 10,
    "requests_per_hour": 100,
    "tokens_per_minute": 50_000,
    "tokens_per_hour": 200_000,
}


class CostManager:
    """Checks a prospective AI call against budgets and rate limits."""

    def __init__(self, budgets: dict | None = None, rate_limits: dict | None = None):
        self.budgets = dict(DEFAULT_BUDGETS)
        if has_app_context():
            cfg = current_app.config
            self.budgets["per_workspace_daily"] = cfg.get(
                "AI_BUDGET_PER_WORKSPACE_DAILY", self.budgets["per_workspace_daily"])
            self.budgets["per_user_monthly"] = cfg.get(
                "AI_BUDGET_PER_USER_MONTHLY", self.budgets["per_user_monthly"])
        if budgets:
            self.budgets.update(budgets)
        self.rate_limits = dict(RATE_LIMITS, **(rate_limits or {}))

    # ── Pricing ───────────────────────────────────────────────────────────

    @staticmethod
    def estimate_cost(model: str, input_tokens: int, output_tokens: int = 0) -> float:
        pricing = TOKEN_COSTS.get(model, {"input": 0.0, "output": 0.0})
        return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000

    # ── Usage queries ─────────────────────────────────────────────────────

    @staticmethod
    def _sum(column, *criteria) -> float:
        value = db.session.query(func.coalesce(func.sum(column), 0)).filter(
            AIUsageLog.success.is_(True), *criteria,
        ).scalar()
        return value or 0

    def user_window(self, user_id, since: datetime) -> tuple[int, int]:
        """(request count, token count) for ``user_id`` since ``since``."""
        requests = AIUsageLog.query.filter(
            AIUsageLog.user_id == user_id, AIUsageLog.created_at >= since,
        ).count()
        tokens = int(self._sum(AIUsageLog.total_tokens,
                               AIUsageLog.user_id == user_id, AIUsageLog.created_at >= since))
        return requests, tokens

    def work_item_spend(self, work_item_id) -> float:
        return float(self._sum(AIUsageLog.cost_usd, AIUsageLog.work_item_id == work_item_id))

    def workspace_spend_today(self, workspace_id, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return float(self._sum(AIUsageLog.cost_usd,
                               AIUsageLog.workspace_id == workspace_id,
                               AIUsageLog.created_at >= start))

    def user_spend_this_month(self, user_id, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return float(self._sum(AIUsageLog.cost_usd,
                               AIUsageLog.user_id == user_id,
                               AIUsageLog.created_at >= start))

    # ── Checks ────────────────────────────────────────────────────────────

    def check_rate_limit(self, user_id, estimated_tokens: int, now: datetime | None = None) -> dict:
        if user_id is None:
            return {"allowed": True}
        now = now or datetime.now(timezone.utc)
        minute_requests, minute_tokens = self.user_window(user_id, now - timedelta(minutes=1))
        hour_requests, hour_tokens = self.user_window(user_id, now - timedelta(hours=1))
        limits = self.rate_limits

        if minute_requests >= limits["requests_per_minute"]:
            return {"allowed": False, "wait_seconds": 60,
                    "reason": f"Rate limit: Maximum {limits['requests_per_minute']} requests per minute"}
        if hour_requests >= limits["requests_per_hour"]:
            return {"allowed": False, "wait_seconds": 3600,
                    "reason": f"Rate limit: Maximum {limits['requests_per_hour']} requests per hour"}
        if minute_tokens + estimated_tokens > limits["tokens_per_minute"]:
            return {"allowed": False, "wait_seconds": 60,
                    "reason": f"Rate limit: Maximum {limits['tokens_per_minute']} tokens per minute"}
        if hour_tokens + estimated_tokens > limits["tokens_per_hour"]:
            return {"allowed": False, "wait_seconds": 3600,
                    "reason": f"Rate limit: Maximum {limits['tokens_per_hour']} tokens per hour"}
        return {"allowed": True}

    def check_budget(self, estimated_cost: float, *, field: bool = False, work_item_id=None,
                     workspace_id=None, user_id=None, now: datetime | None = None) -> dict:
        """Return {"allowed": True} or {"allowed": False, reason, budget, used, estimated}."""
        budgets = self.budgets

        def refuse(reason, budget, used):
            logger.info("AI budget refused: %s", reason)
            return {"allowed": False, "reason": reason, "budget": budget,
                    "used": round(used, 6), "estimated": round(estimated_cost, 6)}

        if field and estimated_cost > budgets["per_field"]:
            return refuse(f"Budget exceeded: Maximum ${budgets['per_field']} per field",
                          budgets["per_field"], 0.0)
        if work_item_id is not None:
            used = self.work_item_spend(work_item_id)
            if used + estimated_cost > budgets["per_work_item"]:
                return refuse(f"Budget exceeded: Maximum ${budgets['per_work_item']} per work item",
                              budgets["per_work_item"], used)
        if workspace_id is not None:
            used = self.workspace_spend_today(workspace_id, now)
            if used + estimated_cost > budgets["per_workspace_daily"]:
                return refuse(
                    f"Budget exceeded: Maximum ${budgets['per_workspace_daily']} per workspace per day",
                    budgets["per_workspace_daily"], used)
        if user_id is not None:
            used = self.user_spend_this_month(user_id, now)
            if used + estimated_cost > budgets["per_user_monthly"]:
                return refuse(f"Budget exceeded: Maximum ${budgets['per_user_monthly']} per month",
                              budgets["per_user_monthly"], used)
        return {"allowed": True}

    def check_request(self, *, model: str, estimated_tokens: int, user_id=None,
                      workspace_id=None, work_item_id=None) -> dict:
        """Rate limit first, then budgets.  Used by the gateway before every call."""
        rate = self.check_rate_limit(user_id, estimated_tokens)
        if not rate["allowed"]:
            return rate
        estimated = self.estimate_cost(model, estimated_tokens, estimated_tokens)
        return self.check_budget(
            estimated, field=False, work_item_id=work_item_id,
            workspace_id=workspace_id, user_id=user_id,
        )

    # ── Reporting ─────────────────────────────────────────────────────────

    def usage_summary(self, workspace_id=None, user_id=None, days: int = 30) -> dict:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        criteria = [AIUsageLog.created_at >= since]
        if workspace_id is not None:
            criteria.append(AIUsageLog.workspace_id == workspace_id)
        if user_id is not None:
            criteria.append(AIUsageLog.user_id == user_id)

        rows = (
            db.session.query(
                AIUsageLog.model,
                func.count(AIUsageLog.id),
                func.coalesce(func.sum(AIUsageLog.total_tokens), 0),
                func.coalesce(func.sum(AIUsageLog.cost_usd), 0.0),
            )
            .filter(*criteria)
            .group_by(AIUsageLog.model)
            .all()
        )
        by_model = [
            {"model": model, "requests": count, "tokens": int(tokens), "cost_usd": round(cost, 6)}
            for model, count, tokens, cost in rows
        ]
        return {
            "days": days,
            "total_requests": sum(m["requests"] for m in by_model),
            "total_tokens": sum(m["tokens"] for m in by_model),
            "total_cost_usd": round(sum(m["cost_usd"] for m in by_model), 6),
            "by_model": by_model,
            "budgets": self.budgets,
        }
