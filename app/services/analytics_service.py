"""
Analytics Service — dashboard aggregates over work items, connections and
strategies.

Every function takes a team id and an optional workspace id; without a
workspace id the whole team is aggregated.  Chart series use the
{name, value} / {date, value} shapes the dashboards render directly.
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from app.models.strategy import Strategy
from app.models.work_item import WorkItem, WorkItemConnection
from app.services import graph_analysis

logger = logging.getLogger(__name__)

TREND_WEEKS = 12
RECENT_ACTIVITY_LIMIT = 10
TOP_LIST_LIMIT = 10
BLOCKING_TYPES = ("blocks", "dependency")

ACTIVITY_TYPES = {"completed": "completed", "blocked": "blocked", "in_progress": "updated"}


def format_label(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in str(value).split("_"))


def _pie(counter: Counter) -> list[dict]:
    return [{"name": format_label(name), "value": value} for name, value in counter.items()]


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _work_items(team_id, workspace_id=None):
    query = WorkItem.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    return query.order_by(WorkItem.id).all()


def _connections(team_id, workspace_id=None):
    query = WorkItemConnection.query.filter_by(status="active")
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    else:
        query = query.join(
            WorkItem, WorkItem.id == WorkItemConnection.source_work_item_id,
        ).filter(WorkItem.team_id == team_id)
    return query.order_by(WorkItemConnection.id).all()


def weekly_trend(items, predicate, weeks: int = TREND_WEEKS, now: datetime | None = None) -> list[dict]:
    """Count items matching ``predicate`` whose updated_at falls in each week.

    Week i starts at midnight of (now - i*7 days); oldest week first.
    """
    now = now or datetime.now(timezone.utc)
    trend = []
    for i in range(weeks - 1, -1, -1):
        week_start = (now - timedelta(days=i * 7)).replace(
            hour=0, minute=0, second=0, microsecond=0,
        )
        week_end = week_start + timedelta(days=7)
        count = sum(
            1 for item in items
            if predicate(item)
            and item.updated_at is not None
            and week_start <= _aware(item.updated_at) < week_end
        )
        trend.append({"date": week_start.date().isoformat(), "value": count})
    return trend


# ── Overview ─────────────────────────────────────────────────────────────────


def overview(team_id, workspace_id=None) -> dict:
    items = _work_items(team_id, workspace_id)
    total = len(items)
    completed = sum(1 for i in items if i.status == "completed")
    in_progress = sum(1 for i in items if i.status == "in_progress")
    blocked = sum(1 for i in items if i.status == "blocked")

    recent = sorted(
        items,
        key=lambda i: _aware(i.updated_at) or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )[:RECENT_ACTIVITY_LIMIT]

    return {
        "totalWorkItems": total,
        "completedCount": completed,
        "inProgressCount": in_progress,
        "blockedCount": blocked,
        "completionRate": round(completed / total * 100) if total else 0,
        "byStatus": _pie(Counter(i.status or "unknown" for i in items)),
        "byType": _pie(Counter(i.type or "unknown" for i in items)),
        "byPriority": _pie(Counter(i.priority or "unknown" for i in items)),
        "byWorkflowStage": _pie(Counter(i.workflow_stage or "unknown" for i in items)),
        "completionTrend": weekly_trend(items, lambda i: i.status == "completed"),
        "recentActivity": [
            {
                "id": f"activity-{i.id}",
                "type": ACTIVITY_TYPES.get(i.status, "created"),
                "work_item_id": i.id,
                "work_item_name": i.name,
                "timestamp": _aware(i.updated_at).isoformat() if i.updated_at else None,
            }
            for i in recent
        ],
    }


# ── Dependencies ─────────────────────────────────────────────────────────────


def find_blocked_ids(items, connections) -> set:
    """Items with status blocked, or targeted by a blocking edge from an
    unfinished item."""
    by_id = {i.id: i for i in items}
    blocked = {i.id for i in items if i.status == "blocked"}
    for conn in connections:
        if conn.connection_type not in BLOCKING_TYPES:
            continue
        source = by_id.get(conn.source_work_item_id)
        if source is not None and source.status != "completed":
            blocked.add(conn.target_work_item_id)
    return blocked


def calculate_health_score(items, connections) -> int:
    """0-100.  Penalizes blocked ratio and dense dependencies, rewards completion."""
    if not items:
        return 100
    total = len(items)
    blocked_ratio = len(find_blocked_ids(items, connections) & {i.id for i in items}) / total
    completed_ratio = sum(1 for i in items if i.status == "completed") / total
    avg_deps = len(connections) * 2 / total

    score = 100.0
    score -= min(blocked_ratio * 100, 40)
    if avg_deps > 3:
        score -= min((avg_deps - 3) * 5, 20)
    score += completed_ratio * 20
    return round(max(0, min(100, score)))


def simple_critical_path(items, connections) -> dict:
    """Longest chain of items over every active connection type."""
    if not items or not connections:
        return {"length": 0, "items": []}

    features = [{"id": i.id, "name": i.name, "type": i.type} for i in items]
    # Every connection type counts as ordering here.
    edges = [
        {"source": c.source_work_item_id, "target": c.target_work_item_id,
         "type": "dependency", "status": "active"}
        for c in connections
    ]
    graph = graph_analysis.build_graph(features, edges)
    order = graph_analysis.topological_order(graph)

    best = []
    for start in graph_analysis.find_start_nodes(graph) or list(graph["nodes"]):
        for end in graph_analysis.find_end_nodes(graph) or list(graph["nodes"]):
            path = graph_analysis.find_longest_path(graph, start, end, order)
            if path and len(path) > len(best):
                best = path

    names = {i.id: i.name for i in items}
    return {"length": len(best), "items": [{"id": iid, "name": names[iid]} for iid in best]}


def dependencies(team_id, workspace_id=None) -> dict:
    items = _work_items(team_id, workspace_id)
    connections = _connections(team_id, workspace_id)
    by_id = {i.id: i for i in items}

    blocked_by: dict = {}
    for conn in connections:
        if conn.connection_type not in BLOCKING_TYPES:
            continue
        source = by_id.get(conn.source_work_item_id)
        if source is not None and source.status != "completed":
            blocked_by.setdefault(conn.target_work_item_id, []).append(source.name)

    blocked_ids = find_blocked_ids(items, connections)
    blocked_items = [
        {
            "id": i.id,
            "name": i.name,
            "status": i.status,
            "blocked_by": blocked_by.get(i.id, []),
            "blocked_by_count": len(blocked_by.get(i.id, [])),
        }
        for i in items if i.id in blocked_ids
    ]
    blocked_items.sort(key=lambda b: b["blocked_by_count"], reverse=True)

    degree = Counter()
    for conn in connections:
        degree[conn.source_work_item_id] += 1
        degree[conn.target_work_item_id] += 1

    risk_items = []
    for item in items:
        deps = degree.get(item.id, 0)
        risk = min(deps * 15, 60)
        if item.id in blocked_ids:
            risk += 30
        elif item.status == "not_started":
            risk += 10
        risk = min(risk, 100)
        if risk > 30:
            risk_items.append({
                "id": item.id,
                "name": item.name,
                "status": item.status,
                "dependency_count": deps,
                "risk_score": risk,
            })
    risk_items.sort(key=lambda r: r["risk_score"], reverse=True)

    return {
        "totalDependencies": len(connections),
        "blockedCount": len(blocked_items),
        "byType": _pie(Counter(c.connection_type for c in connections)),
        "blockedItems": blocked_items[:TOP_LIST_LIMIT],
        "riskItems": risk_items[:TOP_LIST_LIMIT],
        "criticalPath": simple_critical_path(items, connections),
        "healthScore": calculate_health_score(items, connections),
    }


# ── Strategy alignment ───────────────────────────────────────────────────────


def alignment(team_id, workspace_id=None) -> dict:
    query = Strategy.query.filter_by(team_id=team_id)
    if workspace_id is not None:
        query = query.filter_by(workspace_id=workspace_id)
    strategies = query.order_by(Strategy.sort_order, Strategy.id).all()
    items = _work_items(team_id, workspace_id)

    aligned = sum(1 for i in items if i.strategy_id)
    pillars = [s for s in strategies if s.type == "pillar" or not s.parent_id]

    progress_by_pillar = []
    for pillar in pillars:
        member_ids = {pillar.id} | {s.id for s in strategies if s.parent_id == pillar.id}
        progress_by_pillar.append({
            "id": pillar.id,
            "name": pillar.title,
            "progress": pillar.effective_progress,
            "workItemCount": sum(1 for i in items if i.strategy_id in member_ids),
        })

    return {
        "totalStrategies": len(strategies),
        "byType": _pie(Counter(s.type or "unknown" for s in strategies)),
        "byStatus": _pie(Counter(s.status or "unknown" for s in strategies)),
        "alignedWorkItemCount": aligned,
        "unalignedWorkItemCount": len(items) - aligned,
        "alignmentRate": round(aligned / len(items) * 100) if items else 0,
        "progressByPillar": progress_by_pillar,
        "unalignedItems": [
            {"id": i.id, "name": i.name, "type": i.type or "unknown"}
            for i in items if not i.strategy_id
        ][:TOP_LIST_LIMIT],
    }


# ── Delivery performance ─────────────────────────────────────────────────────


def _average_cycle_days(items) -> float:
    done = [i for i in items if i.status == "completed" and i.created_at and i.updated_at]
    if not done:
        return 0
    total = sum(
        (_aware(i.updated_at) - _aware(i.created_at)).total_seconds() / 86400 for i in done
    )
    return round(total / len(done), 1)


def performance(team_id, workspace_id=None, today: date | None = None) -> dict:
    items = _work_items(team_id, workspace_id)
    today = today or date.today()
    total = len(items)
    completed = sum(1 for i in items if i.status == "completed")

    owners = Counter((i.owner or "").strip() or "Unassigned" for i in items)

    return {
        "totalWorkItems": total,
        "byStatus": _pie(Counter(i.status or "not_started" for i in items)),
        "byType": _pie(Counter(i.type or "other" for i in items)),
        "byOwner": [
            {"name": name, "value": value}
            for name, value in owners.most_common(TOP_LIST_LIMIT)
        ],
        "overdueCount": sum(
            1 for i in items
            if i.planned_end_date and i.planned_end_date < today and i.status != "completed"
        ),
        "completionRate": round(completed / total * 100) if total else 0,
        "velocityTrend": weekly_trend(items, lambda i: i.status == "completed"),
        "avgCycleTimeDays": _average_cycle_days(items),
    }
