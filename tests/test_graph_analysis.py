"""
Unit tests for app.services.graph_analysis — pure functions, no database.

Covers critical path, bottleneck detection and severity, dependency cycles,
clusters and graph statistics.
"""

import pytest

from app.services import graph_analysis as ga


def _feature(fid, name=None, **extra):
    return {"id": fid, "name": name or f"F{fid}", "type": "feature", **extra}


def _edge(source, target, edge_type="dependency", status="active", strength=0.5):
    return {"source": source, "target": target, "type": edge_type,
            "status": status, "strength": strength}


class TestBuildGraph:
    def test_inactive_edges_are_dropped(self):
        graph = ga.build_graph(
            [_feature(1), _feature(2)],
            [_edge(1, 2), _edge(2, 1, status="inactive")],
        )
        assert len(graph["edges"]) == 1
        assert graph["adjacency"][1] == [{"id": 2, "type": "dependency", "strength": 0.5}]
        assert graph["adjacency"][2] == []

    def test_only_ordering_edges_enter_adjacency(self):
        graph = ga.build_graph([_feature(1), _feature(2)], [_edge(1, 2, "relates_to")])
        assert len(graph["edges"]) == 1
        assert graph["adjacency"][1] == []

    def test_node_defaults(self):
        graph = ga.build_graph([_feature(1)], [])
        node = graph["nodes"][1]
        assert node["priority"] == "medium"
        assert node["status"] == "not_started"
        assert node["workflow_stage"] == "ideation"


class TestCriticalPath:
    def test_chain(self):
        result = ga.calculate_critical_path(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2), _edge(2, 3)],
        )
        assert result["critical_path"]["path"] == [1, 2, 3]
        assert result["critical_path"]["length"] == 3
        assert result["start_nodes"] == [1]
        assert result["end_nodes"] == [3]

    def test_empty_workspace(self):
        result = ga.calculate_critical_path([], [])
        assert result["critical_path"] is None
        assert result["all_paths"] == []
        assert result["graph_stats"]["node_count"] == 0

    def test_isolated_node_is_its_own_path(self):
        result = ga.calculate_critical_path([_feature(1)], [])
        assert result["critical_path"]["path"] == [1]
        assert result["critical_path"]["length"] == 1

    def test_longest_branch_wins(self):
        features = [_feature(i) for i in range(1, 6)]
        edges = [_edge(1, 2), _edge(2, 3), _edge(3, 5), _edge(1, 4), _edge(4, 5)]
        result = ga.calculate_critical_path(features, edges)
        assert result["critical_path"]["path"] == [1, 2, 3, 5]

    def test_paths_sorted_by_length(self):
        features = [_feature(i) for i in range(1, 5)]
        edges = [_edge(1, 2), _edge(2, 3)]
        result = ga.calculate_critical_path(features, edges)
        lengths = [p["length"] for p in result["all_paths"]]
        assert lengths == sorted(lengths, reverse=True)
        assert result["critical_path"]["length"] == 3

    def test_effort_uses_estimate_then_difficulty(self):
        features = [
            _feature(1, estimated_hours=10),
            _feature(2, timeline_items=[{"difficulty": "hard"}]),
            _feature(3),
        ]
        result = ga.calculate_critical_path(features, [_edge(1, 2), _edge(2, 3)])
        assert result["critical_path"]["total_effort"] == 10 + 80 + 24

    def test_find_longest_path_same_node(self):
        graph = ga.build_graph([_feature(1)], [])
        assert ga.find_longest_path(graph, 1, 1) == [1]

    def test_find_longest_path_unreachable(self):
        graph = ga.build_graph([_feature(1), _feature(2)], [])
        assert ga.find_longest_path(graph, 1, 2) is None

    def test_find_longest_path_in_cyclic_graph(self):
        graph = ga.build_graph(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2), _edge(2, 3), _edge(3, 2)],
        )
        assert ga.topological_order(graph) is None
        assert ga.find_longest_path(graph, 1, 3) == [1, 2, 3]


class TestBottlenecks:
    def test_blocks_two_items(self):
        result = ga.detect_bottlenecks(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2, "blocks"), _edge(1, 3, "blocks")],
        )
        assert len(result) == 1
        assert result[0]["feature_id"] == 1
        assert result[0]["blocking_count"] == 2
        # (2 * 3) * 1.5 for not_started
        assert result[0]["severity"] == 9

    def test_severity_rounds_half_up(self):
        result = ga.detect_bottlenecks(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2, "blocks"), _edge(3, 1, "dependency")],
        )
        assert [b["feature_id"] for b in result] == [1]
        assert result[0]["severity"] == 8

    def test_completed_item_is_not_a_mixed_bottleneck(self):
        result = ga.detect_bottlenecks(
            [_feature(1, status="completed"), _feature(2), _feature(3)],
            [_edge(1, 2, "blocks"), _edge(3, 1, "dependency")],
        )
        assert result == []

    @pytest.mark.parametrize("status,expected", [
        ("in_progress", 5),
        ("not_started", 8),
        ("blocked", 10),
    ])
    def test_severity_multipliers(self, status, expected):
        assert ga.calculate_bottleneck_severity(1, 1, status) == expected

    def test_sorted_by_severity(self):
        features = [_feature(i) for i in range(1, 7)]
        edges = [
            _edge(1, 2, "blocks"), _edge(1, 3, "blocks"),
            _edge(4, 2, "blocks"), _edge(4, 3, "blocks"), _edge(4, 5, "blocks"),
        ]
        result = ga.detect_bottlenecks(features, edges)
        assert [b["feature_id"] for b in result] == [4, 1]


class TestCycles:
    def test_two_node_dependency_cycle(self):
        cycles = ga.detect_circular_dependencies(
            [_feature(1, "A"), _feature(2, "B")],
            [_edge(1, 2), _edge(2, 1)],
        )
        assert len(cycles) == 1
        assert cycles[0]["cycle"] == [1, 2]
        assert cycles[0]["length"] == 2
        assert [f["name"] for f in cycles[0]["features"]] == ["A", "B"]

    def test_blocks_edges_ignored_for_dependency_cycles(self):
        cycles = ga.detect_circular_dependencies(
            [_feature(1), _feature(2)],
            [_edge(1, 2, "blocks"), _edge(2, 1, "blocks")],
        )
        assert cycles == []

    def test_find_cycles_sees_mixed_ordering_edges(self):
        graph = ga.build_graph(
            [_feature(1), _feature(2)],
            [_edge(1, 2, "blocks"), _edge(2, 1, "dependency")],
        )
        assert len(ga.find_cycles(graph)) == 1

    def test_acyclic(self):
        cycles = ga.detect_circular_dependencies(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2), _edge(2, 3), _edge(1, 3)],
        )
        assert cycles == []


class TestClustersAndStats:
    def test_cluster_ignores_direction_and_type(self):
        features = [_feature(1), _feature(2), _feature(3)]
        clusters = ga.detect_clusters(features, [_edge(2, 1, "relates_to")])
        assert len(clusters) == 1
        assert clusters[0]["size"] == 2
        assert {f["id"] for f in clusters[0]["features"]} == {1, 2}
        assert clusters[0]["density"] == 0.5

    def test_singletons_are_not_clusters(self):
        assert ga.detect_clusters([_feature(1), _feature(2)], []) == []

    @staticmethod
    def _complete(ids):
        return [_edge(a, b) for a in ids for b in ids if a != b]

    def test_two_complete_triangles_are_two_dense_clusters(self):
        features = [_feature(i) for i in range(1, 7)]
        clusters = ga.detect_clusters(features, self._complete([1, 2, 3]) + self._complete([4, 5, 6]))
        assert [(c["size"], c["density"]) for c in clusters] == [(3, 1.0), (3, 1.0)]
        assert [{f["id"] for f in c["features"]} for c in clusters] == [{1, 2, 3}, {4, 5, 6}]

    def test_isolated_node_is_in_no_cluster(self):
        features = [_feature(i) for i in range(1, 8)]
        connections = self._complete([1, 2, 3]) + self._complete([4, 5, 6])
        clusters = ga.detect_clusters(features, connections)
        assert all(7 not in {f["id"] for f in c["features"]} for c in clusters)

        stats = ga.calculate_graph_stats(ga.build_graph(features, connections))
        assert stats["isolated_node_count"] == 1
        assert stats["isolated_nodes"] == [7]

    def test_graph_stats(self):
        graph = ga.build_graph(
            [_feature(1), _feature(2), _feature(3)],
            [_edge(1, 2), _edge(2, 3)],
        )
        stats = ga.calculate_graph_stats(graph)
        assert stats["node_count"] == 3
        assert stats["edge_count"] == 2
        assert stats["density"] == round(2 / 6, 4)
        assert stats["avg_in_degree"] == 0.67
        assert stats["isolated_node_count"] == 0

    def test_analyze_workspace_shape(self):
        result = ga.analyze_workspace(7, [_feature(1), _feature(2)], [_edge(1, 2)])
        assert result["workspace_id"] == 7
        assert set(result) >= {
            "analyzed_at", "critical_path", "bottlenecks", "circular_dependencies", "clusters",
        }
