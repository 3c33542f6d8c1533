"""
Scheduling — Critical Path Method over dated work items.

Only work items with a planned start date, planned end date and
``duration_days`` take part.  Precedence comes from connections between two
such items:

    A -[blocks]->     B   A must finish before B starts
    A -[dependency]-> B   A depends on B, so B must finish before A starts

Forward pass gives earliest start/finish, backward pass latest start/finish,
slack = latest_start - earliest_start, critical when slack < 0.001.
Callers must reject cyclic graphs first (see dependency_service.analyze).
"""

import logging

logger = logging.getLogger(__name__)

CRITICAL_SLACK_EPSILON = 0.001


def schedulable_items(items: list[dict]) -> list[dict]:
    return [
        i for i in items
        if i.get("planned_start_date") and i.get("planned_end_date") and i.get("duration_days")
    ]


def build_precedence(items: list[dict], connections: list[dict]) -> tuple[dict, dict]:
    """Return (predecessors, successors) maps restricted to schedulable items."""
    ids = {i["id"] for i in items}
    predecessors = {i["id"]: [] for i in items}
    successors = {i["id"]: [] for i in items}

    for conn in connections:
        if conn.get("status", "active") != "active":
            continue
        if conn["type"] == "blocks":
            before, after = conn["source"], conn["target"]
        elif conn["type"] == "dependency":
            before, after = conn["target"], conn["source"]
        else:
            continue
        if before in ids and after in ids:
            predecessors[after].append(before)
            successors[before].append(after)

    return predecessors, successors


def _dependency_order(ids: list, predecessors: dict) -> list:
    """Iterative post-order so every predecessor precedes its successors."""
    order = []
    done = set()
    for root in ids:
        if root in done:
            continue
        stack = [(root, iter(predecessors[root]))]
        in_progress = {root}
        while stack:
            node, preds = stack[-1]
            advanced = False
            for pred in preds:
                if pred not in done and pred not in in_progress:
                    in_progress.add(pred)
                    stack.append((pred, iter(predecessors[pred])))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                in_progress.discard(node)
                done.add(node)
                order.append(node)
    return order


def calculate_critical_path(items: list[dict], connections: list[dict]) -> dict:
    """CPM analysis.

    Returns {item_id: {id, earliest_start, earliest_finish, latest_start,
    latest_finish, slack, is_critical}} for every schedulable item.
    """
    dated = schedulable_items(items)
    if not dated:
        return {}

    durations = {i["id"]: float(i["duration_days"]) for i in dated}
    ids = [i["id"] for i in dated]
    predecessors, successors = build_precedence(dated, connections)
    order = _dependency_order(ids, predecessors)

    nodes = {
        iid: {
            "id": iid,
            "earliest_start": 0.0,
            "earliest_finish": durations[iid],
            "latest_start": float("inf"),
            "latest_finish": float("inf"),
            "slack": 0.0,
            "is_critical": False,
        }
        for iid in ids
    }

    # Forward pass
    for iid in order:
        node = nodes[iid]
        preds = predecessors[iid]
        if preds:
            node["earliest_start"] = max(nodes[p]["earliest_finish"] for p in preds)
        node["earliest_finish"] = node["earliest_start"] + durations[iid]

    project_end = max(n["earliest_finish"] for n in nodes.values())

    # Backward pass
    for iid in reversed(order):
        node = nodes[iid]
        succs = successors[iid]
        if succs:
            node["latest_finish"] = min(nodes[s]["latest_start"] for s in succs)
        else:
            node["latest_finish"] = project_end
        node["latest_start"] = node["latest_finish"] - durations[iid]

    for node in nodes.values():
        node["slack"] = node["latest_start"] - node["earliest_start"]
        node["is_critical"] = node["slack"] < CRITICAL_SLACK_EPSILON

    return nodes


def get_critical_path_items(items: list[dict], connections: list[dict]) -> list:
    nodes = calculate_critical_path(items, connections)
    return [iid for iid, node in nodes.items() if node["is_critical"]]


def get_project_duration(items: list[dict], connections: list[dict]) -> float:
    nodes = calculate_critical_path(items, connections)
    if not nodes:
        return 0
    return max(n["earliest_finish"] for n in nodes.values())
