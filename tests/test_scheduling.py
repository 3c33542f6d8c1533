"""
Unit tests for app.services.scheduling — CPM forward/backward passes.
"""

from datetime import date

from app.services import scheduling


def _item(iid, duration):
    return {
        "id": iid,
        "planned_start_date": date(2025, 1, 1),
        "planned_end_date": date(2025, 2, 1),
        "duration_days": duration,
    }


def _conn(source, target, conn_type="blocks", status="active"):
    return {"source": source, "target": target, "type": conn_type, "status": status}


class TestCriticalPathMethod:
    def test_blocks_chain_is_fully_critical(self):
        nodes = scheduling.calculate_critical_path(
            [_item(1, 5), _item(2, 3)], [_conn(1, 2)],
        )
        assert nodes[1]["earliest_start"] == 0
        assert nodes[2]["earliest_start"] == 5
        assert nodes[2]["earliest_finish"] == 8
        assert nodes[1]["is_critical"] and nodes[2]["is_critical"]

    def test_dependency_edge_reverses_precedence(self):
        # 1 depends on 2, so 2 runs first
        nodes = scheduling.calculate_critical_path(
            [_item(1, 4), _item(2, 6)], [_conn(1, 2, "dependency")],
        )
        assert nodes[2]["earliest_start"] == 0
        assert nodes[1]["earliest_start"] == 6

    def test_parallel_branch_has_slack(self):
        items = [_item(1, 2), _item(2, 10), _item(3, 3), _item(4, 1)]
        conns = [_conn(1, 2), _conn(1, 3), _conn(2, 4), _conn(3, 4)]
        nodes = scheduling.calculate_critical_path(items, conns)
        assert nodes[3]["slack"] == 7
        assert not nodes[3]["is_critical"]
        assert scheduling.get_critical_path_items(items, conns) == [1, 2, 4]
        assert scheduling.get_project_duration(items, conns) == 13

    def test_unscheduled_items_are_excluded(self):
        undated = {"id": 3, "planned_start_date": None, "planned_end_date": None,
                    "duration_days": 4}
        nodes = scheduling.calculate_critical_path([_item(1, 2), undated], [_conn(1, 3)])
        assert list(nodes) == [1]

    def test_inactive_and_unrelated_edges_ignored(self):
        nodes = scheduling.calculate_critical_path(
            [_item(1, 2), _item(2, 2)],
            [_conn(1, 2, status="inactive"), _conn(1, 2, "relates_to")],
        )
        assert nodes[2]["earliest_start"] == 0

    def test_no_items(self):
        assert scheduling.calculate_critical_path([], []) == {}
        assert scheduling.get_project_duration([], []) == 0
