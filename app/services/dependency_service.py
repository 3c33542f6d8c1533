"""
Dependency Service — workspace-level dependency analysis.

Two entry points:
    - analyze(workspace_id): cycle check, then CPM scheduling, bottlenecks and
      a health score.  Critical-path and bottleneck flags are written to the
      importance score records.
    - graph_report(workspace_id): the full graph_analysis report
      (longest path, bottlenecks, dependency cycles, clusters).

Services flush only; the caller commits.
"""

import logging

from app.models.work_item import WorkItem, WorkItemConnection
from app.services import graph_analysis, importance_service, scheduling
from app.services.analytics_service import calculate_health_score
from app.services.connection_service import workspace_graph_inputs

logger = logging.getLogger(__name__)

CYCLE_WARNING = "Circular dependencies detected. Resolve cycles before calculating critical path."
EMPTY_MESSAGE = "No work items found in this workspace"
CYCLE_PENALTY = 20


def _load(workspace_id):
    items = (
        WorkItem.query
        .filter_by(workspace_id=workspace_id)
        .order_by(WorkItem.created_at, WorkItem.id)
        .all()
    )
    connections = (
        WorkItemConnection.query
        .filter_by(workspace_id=workspace_id, status="active")
        .order_by(WorkItemConnection.id)
        .all()
    )
    return items, connections


def analyze(workspace_id) -> dict:
    items, connections = _load(workspace_id)

    if not items:
        return {
            "workspace_id": workspace_id,
            "has_cycles": False,
            "cycles": [],
            "critical_path": [],
            "project_duration": 0,
            "health_score": 100,
            "message": EMPTY_MESSAGE,
        }

    features = [i.to_graph_node() for i in items]
    edges = [c.to_graph_edge() for c in connections]
    graph = graph_analysis.build_graph(features, edges)

    cycles = graph_analysis.find_cycles(graph)
    if cycles:
        affected = sorted({fid for c in cycles for fid in c["cycle"]})
        logger.warning("Workspace %s has %d dependency cycle(s)", workspace_id, len(cycles))
        return {
            "workspace_id": workspace_id,
            "has_cycles": True,
            "cycles": cycles,
            "total_cycles": len(cycles),
            "affected_work_items": affected,
            "health_score": max(0, 100 - CYCLE_PENALTY * len(cycles)),
            "critical_path": [],
            "project_duration": 0,
            "bottlenecks": [],
            "warnings": [CYCLE_WARNING],
        }

    schedule_input = [
        {
            "id": i.id,
            "planned_start_date": i.planned_start_date,
            "planned_end_date": i.planned_end_date,
            "duration_days": i.duration_days,
        }
        for i in items
    ]
    nodes = scheduling.calculate_critical_path(schedule_input, edges)
    critical_ids = [iid for iid, node in nodes.items() if node["is_critical"]]
    duration = max((n["earliest_finish"] for n in nodes.values()), default=0)

    bottlenecks = graph_analysis.detect_bottlenecks(features, edges)

    warnings = []
    unscheduled = len(items) - len(nodes)
    if unscheduled:
        warnings.append(
            f"{unscheduled} work item(s) lack planned dates or duration and were "
            "excluded from the schedule"
        )

    critical_set = set(critical_ids)
    bottleneck_set = {b["feature_id"] for b in bottlenecks}
    for item in items:
        importance_service.mark_critical_path(item.id, item.id in critical_set)
        importance_service.mark_bottleneck(item.id, item.id in bottleneck_set)

    logger.info(
        "Analyzed workspace %s: %d scheduled, %d critical, duration=%s, %d bottlenecks",
        workspace_id, len(nodes), len(critical_ids), duration, len(bottlenecks),
    )
    return {
        "workspace_id": workspace_id,
        "has_cycles": False,
        "cycles": [],
        "total_cycles": 0,
        "affected_work_items": [],
        "critical_path": critical_ids,
        "project_duration": duration,
        "nodes": list(nodes.values()),
        "bottlenecks": bottlenecks,
        "health_score": calculate_health_score(items, connections),
        "warnings": warnings,
    }


def graph_report(workspace_id) -> dict:
    """Full structural report; flags the longest path and bottlenecks."""
    features, edges = workspace_graph_inputs(workspace_id)
    report = graph_analysis.analyze_workspace(workspace_id, features, edges)

    critical = report["critical_path"]["critical_path"]
    on_path = set(critical["path"]) if critical else set()
    bottleneck_ids = {b["feature_id"] for b in report["bottlenecks"]}
    for feature in features:
        importance_service.mark_critical_path(feature["id"], feature["id"] in on_path)
        importance_service.mark_bottleneck(feature["id"], feature["id"] in bottleneck_ids)

    return report
