"""Strategy service layer — OKR hierarchy, reordering, alignment and stats.

Hierarchy (STRATEGY_TYPE_ORDER): pillar 0 → objective 1 → key_result 2 → initiative 3.
A child's type must rank strictly below its parent's; only pillars live at
the root.

Transaction policy: flush only; the route handler commits.
"""
import logging

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.strategy import (
    ALIGNMENT_STRENGTHS,
    PROGRESS_MODES,
    STRATEGY_STATUSES,
    STRATEGY_TYPE_ORDER,
    STRATEGY_TYPES,
    Strategy,
    WorkItemStrategy,
)
from app.models.work_item import WorkItem
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

HIERARCHY_MESSAGE = "Hierarchy must be: Pillar → Objective → Key Result → Initiative"
TOP_ALIGNED_LIMIT = 5

UPDATABLE_FIELDS = (
    "title", "description", "status", "progress", "progress_mode", "metric_name",
    "metric_current", "metric_target", "metric_unit", "start_date", "target_date",
    "owner_id", "color",
)


def can_nest(child_type, parent_type):
    """True when ``child_type`` may sit under ``parent_type`` (None = root)."""
    if parent_type is None:
        return child_type == "pillar"
    return STRATEGY_TYPE_ORDER[child_type] > STRATEGY_TYPE_ORDER[parent_type]


def _label(strategy_type):
    return strategy_type.replace("_", " ")


def _check_fields(data):
    if "status" in data and data["status"] not in STRATEGY_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(STRATEGY_STATUSES))}")
    if "progress_mode" in data and data["progress_mode"] not in PROGRESS_MODES:
        raise ValidationError("progress_mode must be manual or auto")
    if "progress" in data:
        progress = data["progress"]
        if not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("progress must be an integer between 0 and 100")
    if "title" in data and not (data["title"] or "").strip():
        raise ValidationError("title is required")


def get_strategy(strategy_id):
    strategy = db.session.get(Strategy, strategy_id)
    if strategy is None:
        raise NotFoundError("Strategy", strategy_id)
    return strategy


def _next_sort_order(team_id, parent_id):
    last = (
        Strategy.query.filter_by(team_id=team_id, parent_id=parent_id)
        .order_by(Strategy.sort_order.desc())
        .first()
    )
    return last.sort_order + 1 if last else 0


def create_strategy(team_id, data, user_id=None):
    strategy_type = data.get("type")
    if strategy_type not in STRATEGY_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(STRATEGY_TYPES)}")
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required")
    _check_fields(data)

    parent_id = data.get("parent_id")
    parent_type = None
    if parent_id is not None:
        parent = get_strategy(parent_id)
        if parent.team_id != team_id:
            raise ValidationError("Parent strategy belongs to a different team")
        parent_type = parent.type
    if not can_nest(strategy_type, parent_type):
        raise ValidationError(
            f"Cannot place {_label(strategy_type)} under "
            f"{_label(parent_type) if parent_type else 'root level'}. {HIERARCHY_MESSAGE}"
        )

    strategy = Strategy(
        team_id=team_id,
        workspace_id=data.get("workspace_id"),
        parent_id=parent_id,
        type=strategy_type,
        title=data["title"].strip(),
        description=data.get("description") or "",
        status=data.get("status") or "draft",
        progress=data.get("progress") or 0,
        progress_mode=data.get("progress_mode") or "manual",
        metric_name=data.get("metric_name"),
        metric_current=data.get("metric_current"),
        metric_target=data.get("metric_target"),
        metric_unit=data.get("metric_unit"),
        start_date=parse_date(data.get("start_date")),
        target_date=parse_date(data.get("target_date")),
        owner_id=data.get("owner_id"),
        color=data.get("color") or "#6366f1",
        sort_order=_next_sort_order(team_id, parent_id),
        created_by=user_id,
    )
    db.session.add(strategy)
    db.session.flush()
    logger.info("Strategy %s (%s) created in team %s", strategy.id, strategy_type, team_id)
    return strategy


def update_strategy(strategy, data):
    data = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    _check_fields(data)
    for field, value in data.items():
        if field in ("start_date", "target_date"):
            value = parse_date(value)
        elif field == "title":
            value = value.strip()
        setattr(strategy, field, value)
    db.session.flush()
    if strategy.parent_id:
        recalculate_progress(strategy.parent)
    return strategy


def delete_strategy(strategy):
    """Delete a strategy subtree; aligned work items keep existing unaligned."""
    subtree_ids = [s.id for s in _walk(strategy)]
    WorkItem.query.filter(WorkItem.strategy_id.in_(subtree_ids)).update(
        {"strategy_id": None}, synchronize_session=False,
    )
    WorkItemStrategy.query.filter(WorkItemStrategy.strategy_id.in_(subtree_ids)).delete(
        synchronize_session=False,
    )
    parent = strategy.parent
    db.session.delete(strategy)
    db.session.flush()
    if parent is not None:
        recalculate_progress(parent)


def _walk(strategy):
    stack = [strategy]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(node.children)


def list_strategies(team_id, workspace_id=None, strategy_type=None, status=None):
    query = Strategy.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    if strategy_type:
        query = query.filter_by(type=strategy_type)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Strategy.sort_order, Strategy.id).all()


def get_tree(team_id, workspace_id=None):
    """Root strategies with nested children."""
    strategies = list_strategies(team_id, workspace_id)
    ids = {s.id for s in strategies}
    roots = [s for s in strategies if s.parent_id is None or s.parent_id not in ids]
    return [s.to_dict(include_children=True) for s in roots]


def is_descendant(candidate_id, ancestor_id):
    """True when ``candidate_id`` sits somewhere below ``ancestor_id``."""
    visited = set()
    current = db.session.get(Strategy, candidate_id)
    while current is not None and current.id not in visited:
        visited.add(current.id)
        if current.parent_id is None:
            return False
        if current.parent_id == ancestor_id:
            return True
        current = db.session.get(Strategy, current.parent_id)
    return False


def reorder(strategy, new_parent_id, new_sort_order):
    """Move a strategy under ``new_parent_id`` (None = root) at ``new_sort_order``."""
    if not isinstance(new_sort_order, int) or isinstance(new_sort_order, bool) or new_sort_order < 0:
        raise ValidationError("sort_order must be a non-negative number")

    new_parent_type = None
    if new_parent_id is not None:
        new_parent = db.session.get(Strategy, new_parent_id)
        if new_parent is None:
            raise NotFoundError("New parent strategy", new_parent_id)
        if new_parent.team_id != strategy.team_id:
            raise ValidationError("Cannot move strategy to different team")
        if new_parent_id == strategy.id:
            raise ValidationError("Cannot move strategy under itself")
        if is_descendant(new_parent_id, strategy.id):
            raise ValidationError("Cannot move strategy under its own descendant")
        new_parent_type = new_parent.type

    if not can_nest(strategy.type, new_parent_type):
        raise ValidationError(
            f"Cannot place {_label(strategy.type)} under "
            f"{_label(new_parent_type) if new_parent_type else 'root level'}. {HIERARCHY_MESSAGE}"
        )

    old_parent = strategy.parent
    siblings = [
        s for s in Strategy.query.filter_by(team_id=strategy.team_id, parent_id=new_parent_id)
        .order_by(Strategy.sort_order, Strategy.id).all()
        if s.id != strategy.id
    ]
    siblings.insert(min(new_sort_order, len(siblings)), strategy)
    strategy.parent_id = new_parent_id
    for index, sibling in enumerate(siblings):
        sibling.sort_order = index

    if old_parent is not None and old_parent.id != new_parent_id:
        remaining = [c for c in old_parent.children if c.id != strategy.id]
        for index, sibling in enumerate(remaining):
            sibling.sort_order = index

    db.session.flush()
    db.session.expire(strategy, ["parent"])
    logger.info("Strategy %s moved under %s at %s", strategy.id, new_parent_id, new_sort_order)
    return strategy


# ── Alignment ────────────────────────────────────────────────────────────────


def set_primary_strategy(work_item, strategy_id):
    if strategy_id is not None:
        strategy = get_strategy(strategy_id)
        if strategy.team_id != work_item.team_id:
            raise ValidationError("Strategy belongs to a different team")
    work_item.strategy_id = strategy_id
    db.session.flush()
    return work_item


def add_alignment(work_item, strategy_id, strength="medium", notes=""):
    if strength not in ALIGNMENT_STRENGTHS:
        raise ValidationError(
            f"alignment_strength must be one of: {', '.join(sorted(ALIGNMENT_STRENGTHS))}"
        )
    strategy = get_strategy(strategy_id)
    if strategy.team_id != work_item.team_id:
        raise ValidationError("Strategy belongs to a different team")
    existing = WorkItemStrategy.query.filter_by(
        work_item_id=work_item.id, strategy_id=strategy_id,
    ).first()
    if existing:
        raise ConflictError("Alignment", "strategy_id", strategy_id,
                            message="Work item is already aligned to this strategy")
    alignment = WorkItemStrategy(
        work_item_id=work_item.id,
        strategy_id=strategy_id,
        alignment_strength=strength,
        notes=notes or "",
    )
    db.session.add(alignment)
    db.session.flush()
    return alignment


def remove_alignment(work_item, strategy_id):
    deleted = WorkItemStrategy.query.filter_by(
        work_item_id=work_item.id, strategy_id=strategy_id,
    ).delete(synchronize_session=False)
    if not deleted:
        raise NotFoundError("Alignment")
    db.session.flush()


def aligned_work_items(strategy):
    secondary_ids = [
        a.work_item_id for a in WorkItemStrategy.query.filter_by(strategy_id=strategy.id).all()
    ]
    return (
        WorkItem.query.filter(
            (WorkItem.strategy_id == strategy.id) | (WorkItem.id.in_(secondary_ids))
        )
        .order_by(WorkItem.id)
        .all()
    )


def recalculate_progress(strategy):
    """Refresh calculated_progress for auto-mode strategies, bottom-up to the root.

    Average of the children's effective progress; a leaf uses the share of
    completed aligned work items.
    """
    node = strategy
    while node is not None:
        if node.children:
            values = [c.effective_progress for c in node.children]
            node.calculated_progress = round(sum(values) / len(values))
        else:
            items = aligned_work_items(node)
            done = sum(1 for i in items if i.status == "completed")
            node.calculated_progress = round(done / len(items) * 100) if items else 0
        node = node.parent
    db.session.flush()
    return strategy


# ── Stats ────────────────────────────────────────────────────────────────────


def _stats_progress(strategy):
    if strategy.progress_mode == "auto":
        return strategy.calculated_progress or 0
    return strategy.progress or 0


def get_stats(team_id, workspace_id=None):
    strategies = list_strategies(team_id, workspace_id)
    items_query = WorkItem.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        items_query = items_query.filter_by(workspace_id=workspace_id)
    items = items_query.all()

    item_ids = [i.id for i in items]
    secondary = (
        WorkItemStrategy.query.filter(WorkItemStrategy.work_item_id.in_(item_ids)).all()
        if item_ids else []
    )

    by_type = {t: 0 for t in STRATEGY_TYPES}
    by_status = {s: 0 for s in ("draft", "active", "on_hold", "completed", "cancelled")}
    progress = {}
    for s in strategies:
        by_type[s.type] = by_type.get(s.type, 0) + 1
        by_status[s.status] = by_status.get(s.status, 0) + 1
        total, count = progress.get(s.type, (0, 0))
        progress[s.type] = (total + _stats_progress(s), count + 1)

    with_secondary = {a.work_item_id for a in secondary}
    with_primary = sum(1 for i in items if i.strategy_id is not None)
    with_any = sum(1 for i in items if i.strategy_id is not None or i.id in with_secondary)

    counts = {}
    for i in items:
        if i.strategy_id:
            counts[i.strategy_id] = counts.get(i.strategy_id, 0) + 1
    for a in secondary:
        counts[a.strategy_id] = counts.get(a.strategy_id, 0) + 1

    top = [
        {"id": s.id, "title": s.title, "type": s.type, "aligned_count": counts.get(s.id, 0)}
        for s in strategies if counts.get(s.id, 0) > 0
    ]
    top.sort(key=lambda t: t["aligned_count"], reverse=True)

    return {
        "by_type": by_type,
        "by_status": by_status,
        "alignment_coverage": {
            "work_items_total": len(items),
            "work_items_with_primary": with_primary,
            "work_items_with_any": with_any,
            "coverage_percent": round(with_any / len(items) * 100) if items else 0,
        },
        "progress_by_type": [
            {"type": t, "avg_progress": round(total / count) if count else 0, "count": count}
            for t, (total, count) in sorted(progress.items(), key=lambda kv: STRATEGY_TYPE_ORDER[kv[0]])
        ],
        "top_strategies_by_alignment": top[:TOP_ALIGNED_LIMIT],
    }
