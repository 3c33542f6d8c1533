"""
Graph Analysis — critical path, bottlenecks, cycles and clusters.

Pure functions over in-memory work item and connection lists for one
workspace.  Nothing here touches the database; callers (dependency_service)
load the rows, call these functions and persist flags through
importance_service.

Input shapes:
    feature:    {id, name, type, priority?, status?, workflow_stage?,
                 estimated_hours?, timeline_items?: [{difficulty}]}
    connection: {source, target, type, strength?, status}

Graph shape (build_graph):
    nodes:     {id: {id, name, type, priority, status, workflow_stage}}   (insertion ordered)
    edges:     [{source, target, type, strength}]                         (active only)
    adjacency: {id: [{id, type, strength}]}                               (dependency/blocks only)
"""

import logging
import math
from collections import deque
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

ORDERING_EDGE_TYPES = ("dependency", "blocks")

DEFAULT_EFFORT_HOURS = 24
EFFORT_BY_DIFFICULTY = {
    "Easy": 8,
    "Medium": 24,
    "Hard": 80,
}


# ═════════════════════════════════════════════════════════════════════════════
# Graph construction
# ═════════════════════════════════════════════════════════════════════════════


def build_graph(features: list[dict], connections: list[dict]) -> dict:
    """Build the node map, active edge list and ordering adjacency list."""
    nodes = {}
    adjacency = {}
    for feature in features:
        fid = feature["id"]
        nodes[fid] = {
            "id": fid,
            "name": feature.get("name"),
            "type": feature.get("type"),
            "priority": feature.get("priority") or "medium",
            "status": feature.get("status") or "not_started",
            "workflow_stage": feature.get("workflow_stage") or "ideation",
        }
        adjacency[fid] = []

    edges = []
    for conn in connections:
        if conn.get("status") != "active":
            continue
        edges.append({
            "source": conn["source"],
            "target": conn["target"],
            "type": conn["type"],
            "strength": conn.get("strength") or 0.5,
        })
        if conn["type"] in ORDERING_EDGE_TYPES:
            adjacency.setdefault(conn["source"], []).append({
                "id": conn["target"],
                "type": conn["type"],
                "strength": conn.get("strength"),
            })

    return {"nodes": nodes, "edges": edges, "adjacency": adjacency}


def get_incoming_edges(graph: dict, node_id) -> list[dict]:
    return [e for e in graph["edges"] if e["target"] == node_id]


def get_outgoing_edges(graph: dict, node_id) -> list[dict]:
    return [e for e in graph["edges"] if e["source"] == node_id]


def _node_name(graph: dict, node_id) -> str:
    node = graph["nodes"].get(node_id)
    return node["name"] if node and node.get("name") else "Unknown"


# ═════════════════════════════════════════════════════════════════════════════
# Critical path
# ═════════════════════════════════════════════════════════════════════════════


def find_start_nodes(graph: dict) -> list:
    """Nodes with no incoming dependency/blocks edge, in node order."""
    has_incoming = {e["target"] for e in graph["edges"] if e["type"] in ORDERING_EDGE_TYPES}
    return [nid for nid in graph["nodes"] if nid not in has_incoming]


def find_end_nodes(graph: dict) -> list:
    """Nodes with no outgoing dependency/blocks edge, in node order."""
    has_outgoing = {e["source"] for e in graph["edges"] if e["type"] in ORDERING_EDGE_TYPES}
    return [nid for nid in graph["nodes"] if nid not in has_outgoing]


def topological_order(graph: dict) -> list | None:
    """Kahn's algorithm over the adjacency list.

    Returns None when the dependency/blocks subgraph has a cycle.  Ties are
    broken by node insertion order; ids that only appear as edge endpoints
    follow the known nodes.
    """
    adjacency = graph["adjacency"]
    order_hint = list(graph["nodes"])
    seen = set(order_hint)
    for source, neighbors in adjacency.items():
        for nid in (source, *(n["id"] for n in neighbors)):
            if nid not in seen:
                seen.add(nid)
                order_hint.append(nid)

    in_degree = {nid: 0 for nid in order_hint}
    for neighbors in adjacency.values():
        for n in neighbors:
            in_degree[n["id"]] += 1

    queue = deque(nid for nid in order_hint if in_degree[nid] == 0)
    order = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for n in adjacency.get(current, []):
            in_degree[n["id"]] -= 1
            if in_degree[n["id"]] == 0:
                queue.append(n["id"])

    if len(order) != len(order_hint):
        return None
    return order


def _longest_paths_from(graph: dict, start, order: list) -> dict:
    """Longest-path-in-DAG relaxation from ``start``.

    Returns {node_id: predecessor} for every node reachable from start;
    dist counts nodes, so dist[start] == 1.
    """
    adjacency = graph["adjacency"]
    dist = {start: 1}
    prev = {start: None}
    for current in order:
        if current not in dist:
            continue
        for n in adjacency.get(current, []):
            candidate = dist[current] + 1
            if candidate > dist.get(n["id"], 0):
                dist[n["id"]] = candidate
                prev[n["id"]] = current
    return prev


def _walk_back(prev: dict, end) -> list:
    path = []
    node = end
    while node is not None:
        path.append(node)
        node = prev[node]
    path.reverse()
    return path


def _longest_path_dfs(graph: dict, start, end) -> list | None:
    """Exhaustive DFS with visited rollback; used only for cyclic graphs."""
    adjacency = graph["adjacency"]
    visited = set()
    best = {"path": None, "length": 0}

    def dfs(current, path):
        if current == end:
            if len(path) > best["length"]:
                best["length"] = len(path)
                best["path"] = list(path)
            return
        visited.add(current)
        for n in adjacency.get(current, []):
            if n["id"] not in visited:
                path.append(n["id"])
                dfs(n["id"], path)
                path.pop()
        visited.discard(current)

    dfs(start, [start])
    return best["path"]


def find_longest_path(graph: dict, start, end, order: list | None = None) -> list | None:
    """Longest simple path (by node count) from start to end, or None.

    ``start == end`` yields ``[start]``.
    """
    if start == end:
        return [start]
    if order is None:
        order = topological_order(graph)
    if order is None:
        return _longest_path_dfs(graph, start, end)
    prev = _longest_paths_from(graph, start, order)
    if end not in prev:
        return None
    return _walk_back(prev, end)


def get_default_effort(feature: dict) -> int:
    difficulty = "Medium"
    timeline_items = feature.get("timeline_items") or []
    if timeline_items:
        difficulty = (timeline_items[0].get("difficulty") or "Medium").capitalize()
    return EFFORT_BY_DIFFICULTY.get(difficulty, DEFAULT_EFFORT_HOURS)


def calculate_path_effort(path: list, features: list[dict]) -> float:
    by_id = {f["id"]: f for f in features}
    total = 0
    for node_id in path:
        feature = by_id.get(node_id)
        if feature:
            total += feature.get("estimated_hours") or get_default_effort(feature)
    return total


def calculate_critical_path(features: list[dict], connections: list[dict]) -> dict:
    """Longest start→end chain of the workspace.

    Every (start, end) pair with a path is reported; paths are sorted by
    length only (stable), effort is informational.
    """
    graph = build_graph(features, connections)
    start_nodes = find_start_nodes(graph)
    end_nodes = find_end_nodes(graph)
    order = topological_order(graph)

    paths = []
    for start in start_nodes:
        prev = _longest_paths_from(graph, start, order) if order is not None else None
        for end in end_nodes:
            if start == end:
                path = [start]
            elif prev is not None:
                path = _walk_back(prev, end) if end in prev else None
            else:
                path = _longest_path_dfs(graph, start, end)
            if path:
                paths.append({
                    "start": start,
                    "end": end,
                    "path": path,
                    "length": len(path),
                    "total_effort": calculate_path_effort(path, features),
                })

    paths.sort(key=lambda p: p["length"], reverse=True)

    return {
        "critical_path": paths[0] if paths else None,
        "all_paths": paths,
        "start_nodes": start_nodes,
        "end_nodes": end_nodes,
        "graph_stats": calculate_graph_stats(graph),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Bottlenecks
# ═════════════════════════════════════════════════════════════════════════════


def calculate_bottleneck_severity(blocking_count: int, dependency_count: int, status: str) -> int:
    severity = blocking_count * 3 + dependency_count * 2
    if status == "not_started":
        severity *= 1.5
    if status == "blocked":
        severity *= 2
    # Half-up rounding: 7.5 → 8
    return int(math.floor(severity + 0.5))


def detect_bottlenecks(features: list[dict], connections: list[dict]) -> list[dict]:
    graph = build_graph(features, connections)
    bottlenecks = []

    for node_id, node in graph["nodes"].items():
        incoming = get_incoming_edges(graph, node_id)
        outgoing = get_outgoing_edges(graph, node_id)
        blocking_count = sum(1 for e in outgoing if e["type"] == "blocks")
        dependency_count = sum(1 for e in incoming if e["type"] == "dependency")

        is_bottleneck = (
            blocking_count >= 2
            or (dependency_count >= 2 and len(outgoing) >= 2)
            or (blocking_count >= 1 and dependency_count >= 1 and node["status"] != "completed")
        )
        if not is_bottleneck:
            continue

        bottlenecks.append({
            "feature_id": node_id,
            "name": node["name"],
            "incoming_count": len(incoming),
            "outgoing_count": len(outgoing),
            "blocking_count": blocking_count,
            "dependency_count": dependency_count,
            "status": node["status"],
            "severity": calculate_bottleneck_severity(
                blocking_count, dependency_count, node["status"],
            ),
        })

    bottlenecks.sort(key=lambda b: b["severity"], reverse=True)
    return bottlenecks


# ═════════════════════════════════════════════════════════════════════════════
# Circular dependencies
# ═════════════════════════════════════════════════════════════════════════════


def detect_circular_dependencies(features: list[dict], connections: list[dict]) -> list[dict]:
    """Cycles over ``dependency`` edges only (``blocks`` edges are ignored)."""
    return find_cycles(build_graph(features, connections), edge_types=("dependency",))


def find_cycles(graph: dict, edge_types=ORDERING_EDGE_TYPES) -> list[dict]:
    """Iterative DFS with a recursion stack over the given adjacency edge types.

    Roots are visited in node order.  Each root reports at most one cycle:
    the slice of the current path from the revisited node onward.  Acyclic
    graphs yield ``[]``.  The path and recursion stack start empty for every
    root, so a cycle found under one root does not leave stale stack entries
    that could mark later back-edges as cycles.
    """
    adjacency = graph["adjacency"]
    visited = set()
    cycles = []

    for root in graph["nodes"]:
        if root in visited:
            continue
        visited.add(root)
        path = [root]
        on_stack = {root}
        frames = [iter(adjacency.get(root, []))]

        while frames:
            descended = False
            cycle = None
            for neighbor in frames[-1]:
                if neighbor["type"] not in edge_types:
                    continue
                nid = neighbor["id"]
                if nid not in visited:
                    visited.add(nid)
                    path.append(nid)
                    on_stack.add(nid)
                    frames.append(iter(adjacency.get(nid, [])))
                    descended = True
                    break
                if nid in on_stack:
                    cycle = path[path.index(nid):]
                    break

            if cycle is not None:
                cycles.append({
                    "cycle": cycle,
                    "length": len(cycle),
                    "features": [{"id": cid, "name": _node_name(graph, cid)} for cid in cycle],
                })
                break
            if not descended:
                frames.pop()
                on_stack.discard(path.pop())

    return cycles


# ═════════════════════════════════════════════════════════════════════════════
# Clusters
# ═════════════════════════════════════════════════════════════════════════════


def calculate_cluster_density(cluster: list, graph: dict) -> float:
    members = set(cluster)
    edge_count = sum(
        1 for e in graph["edges"] if e["source"] in members and e["target"] in members
    )
    n = len(cluster)
    possible = n * (n - 1)
    return edge_count / possible if possible > 0 else 0


def detect_clusters(features: list[dict], connections: list[dict]) -> list[dict]:
    """Connected components (direction ignored, every edge type) of size >= 2."""
    graph = build_graph(features, connections)
    visited = set()
    clusters = []

    for node_id in graph["nodes"]:
        if node_id in visited:
            continue
        component = []
        queue = deque([node_id])
        visited.add(node_id)
        while queue:
            current = queue.popleft()
            component.append(current)
            for edge in get_incoming_edges(graph, current) + get_outgoing_edges(graph, current):
                next_id = edge["target"] if edge["source"] == current else edge["source"]
                if next_id not in visited:
                    visited.add(next_id)
                    queue.append(next_id)

        if len(component) >= 2:
            clusters.append({
                "size": len(component),
                "features": [{"id": cid, "name": _node_name(graph, cid)} for cid in component],
                "density": calculate_cluster_density(component, graph),
            })

    clusters.sort(key=lambda c: c["size"], reverse=True)
    return clusters


# ═════════════════════════════════════════════════════════════════════════════
# Statistics + full analysis
# ═════════════════════════════════════════════════════════════════════════════


def calculate_graph_stats(graph: dict) -> dict:
    node_count = len(graph["nodes"])
    edge_count = len(graph["edges"])

    in_degrees = {nid: 0 for nid in graph["nodes"]}
    out_degrees = {nid: 0 for nid in graph["nodes"]}
    for edge in graph["edges"]:
        out_degrees[edge["source"]] = out_degrees.get(edge["source"], 0) + 1
        in_degrees[edge["target"]] = in_degrees.get(edge["target"], 0) + 1

    avg_in = sum(in_degrees.values()) / node_count if node_count else 0
    avg_out = sum(out_degrees.values()) / node_count if node_count else 0
    possible = node_count * (node_count - 1)
    density = edge_count / possible if possible > 0 else 0

    isolated = [
        nid for nid in graph["nodes"] if in_degrees[nid] == 0 and out_degrees[nid] == 0
    ]

    return {
        "node_count": node_count,
        "edge_count": edge_count,
        "avg_in_degree": round(avg_in, 2),
        "avg_out_degree": round(avg_out, 2),
        "density": round(density, 4),
        "isolated_node_count": len(isolated),
        "isolated_nodes": isolated,
    }


def analyze_workspace(workspace_id, features: list[dict], connections: list[dict]) -> dict:
    """Run every analysis for one workspace."""
    logger.info("Analyzing workspace %s (%d items, %d connections)",
                workspace_id, len(features), len(connections))

    results = {
        "workspace_id": workspace_id,
        "analyzed_at": datetime.now(timezone.utc).isoformat(),
        "critical_path": calculate_critical_path(features, connections),
        "bottlenecks": detect_bottlenecks(features, connections),
        "circular_dependencies": detect_circular_dependencies(features, connections),
        "clusters": detect_clusters(features, connections),
    }

    critical = results["critical_path"]["critical_path"]
    logger.info(
        "Analysis complete for workspace %s: critical path length=%d bottlenecks=%d "
        "cycles=%d clusters=%d",
        workspace_id,
        critical["length"] if critical else 0,
        len(results["bottlenecks"]),
        len(results["circular_dependencies"]),
        len(results["clusters"]),
    )
    return results
