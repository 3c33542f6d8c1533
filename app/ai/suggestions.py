"""
Product Workspace Platform
AI suggestions — dependency and strategy-alignment proposals.

Nothing here writes a connection or an alignment.  Results are proposals;
the client accepts one by calling the regular connection / strategy
endpoints (or by previewing an agent tool).
"""

import logging

from app.ai.gateway import parse_json_payload
from app.ai.prompt_registry import PromptRegistry
from app.core.exceptions import ValidationError
from app.models.strategy import ALIGNMENT_STRENGTHS, Strategy, WorkItemStrategy
from app.models.work_item import CONNECTION_TYPES, WorkItem, WorkItemConnection

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.6
DEFAULT_STRENGTH = 0.7
MAX_ALIGNMENT_ITEMS = 50
PURPOSE_PREVIEW = 200

_registry = PromptRegistry()


def _chat(gateway, template, *, purpose, user_id, workspace_id, **variables):
    messages = _registry.render(template, **variables)
    result = gateway.chat(
        messages, purpose=purpose, user_id=user_id, workspace_id=workspace_id,
        temperature=0.3, max_tokens=3000,
    )
    payload = parse_json_payload(result["content"])
    if payload is None:
        logger.warning("Unparseable %s response: %.200s", purpose, result["content"])
        raise ValidationError("Failed to parse AI response", status=502)
    usage = {
        "model": result["model"],
        "provider": result.get("provider"),
        "prompt_tokens": result["prompt_tokens"],
        "completion_tokens": result["completion_tokens"],
        "cost_usd": result.get("cost_usd", 0.0),
    }
    return payload, usage


def _as_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ── Dependencies ─────────────────────────────────────────────────────────────


def format_work_items(items) -> str:
    lines = []
    for item in items:
        purpose = (item.purpose or "").strip()[:PURPOSE_PREVIEW] or "No purpose given"
        lines.append(f"[{item.id}] {item.name} ({item.type}): {purpose}")
    return "\n".join(lines)


def suggest_dependencies(gateway, workspace, user_id=None, connection_type=None) -> dict:
    """Ask the model for dependencies between the workspace's work items.

    Suggestions referencing unknown items, pointing at themselves, repeating
    an active connection or falling under MIN_CONFIDENCE are dropped.
    """
    if connection_type is not None and connection_type not in CONNECTION_TYPES:
        raise ValidationError(
            f"connection_type must be one of: {', '.join(sorted(CONNECTION_TYPES))}"
        )

    items = WorkItem.query.filter_by(workspace_id=workspace.id).order_by(WorkItem.id).all()
    if len(items) < 2:
        return {
            "suggestions": [],
            "message": "Need at least 2 work items to suggest dependencies",
        }

    by_id = {item.id: item for item in items}
    existing = {
        (c.source_work_item_id, c.target_work_item_id, c.connection_type)
        for c in WorkItemConnection.query.filter_by(workspace_id=workspace.id, status="active")
    }

    payload, usage = _chat(
        gateway, "dependency_suggestions",
        purpose="dependency_suggestions", user_id=user_id, workspace_id=workspace.id,
        work_items=format_work_items(items),
    )
    raw = payload if isinstance(payload, list) else payload.get("suggestions", [])

    suggestions = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        source_id = _as_int(entry.get("source_id"))
        target_id = _as_int(entry.get("target_id"))
        kind = entry.get("connection_type")
        confidence = _as_float(entry.get("confidence"))
        if source_id not in by_id or target_id not in by_id or source_id == target_id:
            continue
        if kind not in CONNECTION_TYPES or confidence is None or confidence < MIN_CONFIDENCE:
            continue
        if connection_type and kind != connection_type:
            continue
        if (source_id, target_id, kind) in existing:
            continue

        source, target = by_id[source_id], by_id[target_id]
        suggestions.append({
            "source_work_item_id": source_id,
            "target_work_item_id": target_id,
            "connection_type": kind,
            "reason": entry.get("reason") or "",
            "confidence": confidence,
            "strength": _as_float(entry.get("strength")) or DEFAULT_STRENGTH,
            "source_work_item": {"id": source.id, "name": source.name, "type": source.type},
            "target_work_item": {"id": target.id, "name": target.name, "type": target.type},
        })

    suggestions.sort(key=lambda s: s["confidence"], reverse=True)
    logger.info("Dependency suggestions for workspace %s: %d of %d kept",
                workspace.id, len(suggestions), len(raw))
    return {"suggestions": suggestions, "usage": usage}


# ── Strategy alignment ───────────────────────────────────────────────────────


def _alignment_candidates(workspace, work_item_id=None):
    query = WorkItem.query.filter_by(workspace_id=workspace.id)
    if work_item_id is not None:
        return query.filter_by(id=work_item_id).all()
    aligned_ids = {row.work_item_id for row in WorkItemStrategy.query.all()}
    return [
        item for item in query.filter(WorkItem.strategy_id.is_(None)).order_by(WorkItem.id)
        if item.id not in aligned_ids
    ][:MAX_ALIGNMENT_ITEMS]


def suggest_strategy_alignments(gateway, workspace, user_id=None, work_item_id=None) -> dict:
    """Propose strategies for unaligned work items (or for one work item)."""
    items = _alignment_candidates(workspace, work_item_id)
    if work_item_id is not None and not items:
        raise ValidationError("Work item not found in this workspace", status=404)
    if not items:
        return {"suggestions": [], "message": "All work items are already aligned"}

    strategies = (
        Strategy.query.filter_by(team_id=workspace.team_id, status="active")
        .filter((Strategy.workspace_id.is_(None)) | (Strategy.workspace_id == workspace.id))
        .order_by(Strategy.sort_order, Strategy.id)
        .all()
    )
    if not strategies:
        return {"suggestions": [], "message": "No active strategies to align with"}

    items_by_id = {item.id: item for item in items}
    strategies_by_id = {s.id: s for s in strategies}
    existing = {
        (row.work_item_id, row.strategy_id)
        for row in WorkItemStrategy.query.filter(WorkItemStrategy.work_item_id.in_(list(items_by_id)))
    }
    existing |= {(item.id, item.strategy_id) for item in items if item.strategy_id}

    work_items_text = "\n".join(
        f"[W{item.id}] {item.name} ({item.type}): {(item.purpose or '')[:PURPOSE_PREVIEW]}"
        for item in items
    )
    strategies_text = "\n".join(
        f"[S{s.id}] {s.title} ({s.type}): {(s.description or '')[:PURPOSE_PREVIEW]}"
        for s in strategies
    )

    payload, usage = _chat(
        gateway, "strategy_alignment",
        purpose="strategy_alignment", user_id=user_id, workspace_id=workspace.id,
        work_items=work_items_text, strategies=strategies_text,
    )
    raw = payload.get("suggestions", []) if isinstance(payload, dict) else payload

    suggestions = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        item_id = _as_int(entry.get("work_item_id"))
        strategy_id = _as_int(entry.get("strategy_id"))
        confidence = _as_float(entry.get("confidence"))
        if item_id not in items_by_id or strategy_id not in strategies_by_id:
            continue
        if confidence is None or confidence < MIN_CONFIDENCE:
            continue
        if (item_id, strategy_id) in existing:
            continue
        strength = entry.get("alignment_strength")
        strategy = strategies_by_id[strategy_id]
        suggestions.append({
            "work_item_id": item_id,
            "work_item_name": items_by_id[item_id].name,
            "strategy_id": strategy_id,
            "strategy_title": strategy.title,
            "strategy_type": strategy.type,
            "confidence": confidence,
            "reason": entry.get("reason") or "",
            "alignment_strength": strength if strength in ALIGNMENT_STRENGTHS else "medium",
        })

    suggestions.sort(key=lambda s: s["confidence"], reverse=True)
    return {"suggestions": suggestions, "usage": usage}
