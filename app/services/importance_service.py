"""
Importance Service — weighted importance score per work item.

Score components (0-100 each) and default weights:
    dependency      0.20   incoming active ``dependency`` edges × 20
    blocking        0.15   outgoing active ``blocks`` edges × 25
    connection      0.15   active edges touching the item × 10
    business_value  0.20   critical 100 / high 75 / medium 50 / low 25
    priority        0.15   same scale as business value
    workflow        0.10   ideation 100 / planning 75 / execution 50 / completed 25
    complexity      0.05   first timeline item difficulty: Easy 75 / Medium 50 / Hard 25

Scores are persisted in ``feature_importance_scores`` (one row per work
item).  Persistence problems are logged and never fail the calculation.
Services flush only; the caller commits.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.work_item import FeatureImportanceScore, WorkItem
from app.services.connection_service import workspace_graph_inputs

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "dependency": 0.20,
    "blocking": 0.15,
    "connection": 0.15,
    "business_value": 0.20,
    "priority": 0.15,
    "workflow": 0.10,
    "complexity": 0.05,
}

LEVEL_SCORES = {"critical": 100, "high": 75, "medium": 50, "low": 25}
WORKFLOW_SCORES = {"ideation": 100, "planning": 75, "execution": 50, "completed": 25}
COMPLEXITY_SCORES = {"Easy": 75, "Medium": 50, "Hard": 25}
NEUTRAL_SCORE = 50


# ── Component scores ─────────────────────────────────────────────────────────


def _active(connections):
    return [c for c in connections if c.get("status") == "active"]


def calculate_dependency_score(feature_id, connections) -> float:
    incoming = sum(
        1 for c in _active(connections)
        if c["target"] == feature_id and c["type"] == "dependency"
    )
    return min(100, incoming * 20)


def calculate_blocking_score(feature_id, connections) -> float:
    blocking = sum(
        1 for c in _active(connections)
        if c["source"] == feature_id and c["type"] == "blocks"
    )
    return min(100, blocking * 25)


def calculate_connection_score(feature_id, connections) -> float:
    total = sum(
        1 for c in _active(connections)
        if c["source"] == feature_id or c["target"] == feature_id
    )
    return min(100, total * 10)


def calculate_business_value_score(feature: dict) -> float:
    return LEVEL_SCORES.get(feature.get("business_value") or "medium", NEUTRAL_SCORE)


def calculate_priority_score(feature: dict) -> float:
    return LEVEL_SCORES.get(feature.get("priority") or "medium", NEUTRAL_SCORE)


def calculate_workflow_score(feature: dict) -> float:
    return WORKFLOW_SCORES.get(feature.get("workflow_stage") or "ideation", NEUTRAL_SCORE)


def calculate_complexity_score(feature: dict) -> float:
    difficulty = "Medium"
    timeline_items = feature.get("timeline_items") or []
    if timeline_items:
        difficulty = (timeline_items[0].get("difficulty") or "Medium").capitalize()
    return COMPLEXITY_SCORES.get(difficulty, NEUTRAL_SCORE)


def get_connection_metrics(feature_id, connections) -> dict:
    active = _active(connections)
    return {
        "incoming_dependencies": sum(
            1 for c in active if c["target"] == feature_id and c["type"] == "dependency"
        ),
        "outgoing_dependencies": sum(
            1 for c in active if c["source"] == feature_id and c["type"] == "dependency"
        ),
        "total_connections": sum(
            1 for c in active if c["source"] == feature_id or c["target"] == feature_id
        ),
        "blocking_count": sum(
            1 for c in active if c["source"] == feature_id and c["type"] == "blocks"
        ),
    }


def score_feature(feature: dict, connections: list[dict], weights: dict | None = None) -> dict:
    """Compute the score breakdown for one feature (pure)."""
    w = weights or DEFAULT_WEIGHTS
    fid = feature["id"]

    components = {
        "dependency": calculate_dependency_score(fid, connections),
        "blocking": calculate_blocking_score(fid, connections),
        "connection": calculate_connection_score(fid, connections),
        "business_value": calculate_business_value_score(feature),
        "priority": calculate_priority_score(feature),
        "workflow": calculate_workflow_score(feature),
        "complexity": calculate_complexity_score(feature),
    }
    overall = sum(components[key] * w[key] for key in components)

    return {
        "feature_id": fid,
        "overall_score": round(overall, 2),
        "component_scores": {key: round(value, 2) for key, value in components.items()},
        "metrics": get_connection_metrics(fid, connections),
        "calculated_at": datetime.now(timezone.utc).isoformat(),
        "weights": w,
    }


def rank_scores(scores: list[dict]) -> list[dict]:
    """Sort by overall score and attach workspace_rank / percentile."""
    scores.sort(key=lambda s: s["overall_score"], reverse=True)
    n = len(scores)
    for index, score in enumerate(scores):
        score["workspace_rank"] = index + 1
        score["percentile"] = round((n - index) / n * 100)
    return scores


# ── Persistence ──────────────────────────────────────────────────────────────


def _get_or_create_record(work_item_id, workspace_id) -> FeatureImportanceScore:
    record = FeatureImportanceScore.query.filter_by(work_item_id=work_item_id).first()
    if record is None:
        record = FeatureImportanceScore(work_item_id=work_item_id, workspace_id=workspace_id)
        db.session.add(record)
    return record


def save_importance_score(score: dict, workspace_id) -> None:
    """Upsert one score row.  Failures are logged, never raised."""
    try:
        with db.session.begin_nested():
            record = _get_or_create_record(score["feature_id"], workspace_id)
            components = score["component_scores"]
            metrics = score["metrics"]
            record.overall_score = score["overall_score"]
            record.dependency_score = components["dependency"]
            record.blocking_score = components["blocking"]
            record.connection_score = components["connection"]
            record.business_value_score = components["business_value"]
            record.priority_score = components["priority"]
            record.workflow_score = components["workflow"]
            record.complexity_score = components["complexity"]
            record.incoming_dependency_count = metrics["incoming_dependencies"]
            record.outgoing_dependency_count = metrics["outgoing_dependencies"]
            record.total_connection_count = metrics["total_connections"]
            record.blocking_count = metrics["blocking_count"]
            record.calculation_weights = score["weights"]
            record.workspace_rank = score.get("workspace_rank")
            record.percentile = score.get("percentile")
            record.calculated_at = datetime.now(timezone.utc)
    except SQLAlchemyError:
        logger.exception("Error saving importance score for work item %s", score["feature_id"])


def calculate_feature_importance(work_item: WorkItem, weights: dict | None = None) -> dict:
    features, connections = workspace_graph_inputs(work_item.workspace_id)
    feature = next((f for f in features if f["id"] == work_item.id), work_item.to_graph_node())
    score = score_feature(feature, connections, weights)
    save_importance_score(score, work_item.workspace_id)
    return score


def calculate_workspace_importance(workspace_id, weights: dict | None = None) -> list[dict]:
    """Score, rank and persist every work item of a workspace."""
    features, connections = workspace_graph_inputs(workspace_id)

    scores = []
    for feature in features:
        try:
            scores.append(score_feature(feature, connections, weights))
        except (KeyError, TypeError, ValueError):
            logger.exception("Error calculating importance for work item %s", feature["id"])

    rank_scores(scores)
    for score in scores:
        save_importance_score(score, workspace_id)

    logger.info("Calculated importance for %d work items in workspace %s",
                len(scores), workspace_id)
    return scores


# ── Queries + flags ──────────────────────────────────────────────────────────


def get_top_features(workspace_id, limit: int = 10) -> list[dict]:
    rows = (
        FeatureImportanceScore.query
        .filter_by(workspace_id=workspace_id)
        .order_by(FeatureImportanceScore.overall_score.desc())
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]


def get_feature_score(work_item_id) -> dict | None:
    record = FeatureImportanceScore.query.filter_by(work_item_id=work_item_id).first()
    return record.to_dict() if record else None


def _set_flag(work_item_id, field, value) -> None:
    work_item = db.session.get(WorkItem, work_item_id)
    if work_item is None:
        logger.warning("Cannot flag %s on unknown work item %s", field, work_item_id)
        return
    try:
        with db.session.begin_nested():
            record = _get_or_create_record(work_item_id, work_item.workspace_id)
            setattr(record, field, value)
    except SQLAlchemyError:
        logger.exception("Error setting %s for work item %s", field, work_item_id)


def mark_critical_path(work_item_id, is_critical: bool = True) -> None:
    _set_flag(work_item_id, "is_on_critical_path", is_critical)


def mark_bottleneck(work_item_id, is_bottleneck: bool = True) -> None:
    _set_flag(work_item_id, "is_bottleneck", is_bottleneck)
