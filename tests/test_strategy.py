"""
Strategy hierarchy, reordering, alignment and progress roll-up.
"""

import pytest


@pytest.fixture()
def create_strategy(client, team):
    def _create(title, strategy_type, parent=None, **fields):
        payload = {"title": title, "type": strategy_type, **fields}
        if parent is not None:
            payload["parent_id"] = parent["id"]
        res = client.post(f"/api/v1/teams/{team['id']}/strategies", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _create


class TestHierarchy:
    def test_pillar_defaults(self, create_strategy):
        pillar = create_strategy("Grow revenue", "pillar")
        assert pillar["status"] == "draft"
        assert pillar["progress_mode"] == "manual"
        assert pillar["sort_order"] == 0

    def test_only_pillars_at_root(self, client, team):
        res = client.post(f"/api/v1/teams/{team['id']}/strategies",
                          json={"title": "Ship v2", "type": "objective"})
        assert res.status_code == 400
        assert "root level" in res.get_json()["error"]

    def test_child_must_rank_below_parent(self, client, team, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        objective = create_strategy("Expand EU", "objective", parent=pillar)
        res = client.post(f"/api/v1/teams/{team['id']}/strategies",
                          json={"title": "Bad", "type": "objective", "parent_id": objective["id"]})
        assert res.status_code == 400

    def test_levels_may_be_skipped(self, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        initiative = create_strategy("Launch ads", "initiative", parent=pillar)
        assert initiative["parent_id"] == pillar["id"]

    def test_unknown_type(self, client, team):
        res = client.post(f"/api/v1/teams/{team['id']}/strategies",
                          json={"title": "X", "type": "vision"})
        assert res.status_code == 400

    def test_tree(self, client, team, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        create_strategy("A", "objective", parent=pillar)
        create_strategy("B", "objective", parent=pillar)
        body = client.get(f"/api/v1/teams/{team['id']}/strategies?tree=true").get_json()
        assert body["total"] == 1
        assert [c["title"] for c in body["items"][0]["children"]] == ["A", "B"]

    def test_filter_by_type(self, client, team, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        create_strategy("A", "objective", parent=pillar)
        body = client.get(f"/api/v1/teams/{team['id']}/strategies?type=objective").get_json()
        assert [s["title"] for s in body["items"]] == ["A"]

    def test_update_validates_progress(self, client, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        res = client.put(f"/api/v1/strategies/{pillar['id']}", json={"progress": 140})
        assert res.status_code == 400
        res = client.put(f"/api/v1/strategies/{pillar['id']}",
                         json={"progress": 40, "status": "active"})
        assert res.get_json()["progress"] == 40
        assert res.get_json()["effective_progress"] == 40


class TestReorder:
    def test_move_within_parent(self, client, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        create_strategy("A", "objective", parent=pillar)
        b = create_strategy("B", "objective", parent=pillar)
        res = client.put(f"/api/v1/strategies/{b['id']}/reorder",
                         json={"parent_id": pillar["id"], "sort_order": 0})
        assert res.status_code == 200
        children = client.get(f"/api/v1/strategies/{pillar['id']}").get_json()["children"]
        assert [c["title"] for c in children] == ["B", "A"]
        assert [c["sort_order"] for c in children] == [0, 1]

    def test_move_to_other_parent(self, client, create_strategy):
        first = create_strategy("Grow", "pillar")
        second = create_strategy("Retain", "pillar")
        moving = create_strategy("A", "objective", parent=first)
        res = client.put(f"/api/v1/strategies/{moving['id']}/reorder",
                         json={"parent_id": second["id"], "sort_order": 5})
        assert res.get_json()["parent_id"] == second["id"]
        assert res.get_json()["sort_order"] == 0

    def test_cannot_move_under_descendant(self, client, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        objective = create_strategy("A", "objective", parent=pillar)
        res = client.put(f"/api/v1/strategies/{pillar['id']}/reorder",
                         json={"parent_id": objective["id"], "sort_order": 0})
        assert res.status_code == 400

    def test_objective_cannot_move_to_root(self, client, create_strategy):
        objective = create_strategy("A", "objective", parent=create_strategy("Grow", "pillar"))
        res = client.put(f"/api/v1/strategies/{objective['id']}/reorder",
                         json={"parent_id": None, "sort_order": 0})
        assert res.status_code == 400

    def test_negative_sort_order(self, client, create_strategy):
        pillar = create_strategy("Grow", "pillar")
        res = client.put(f"/api/v1/strategies/{pillar['id']}/reorder",
                         json={"parent_id": None, "sort_order": -1})
        assert res.status_code == 400


class TestAlignment:
    def test_primary_strategy(self, client, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar")
        item = make_item("Checkout")
        res = client.put(f"/api/v1/work-items/{item['id']}/strategy",
                         json={"strategy_id": pillar["id"]})
        assert res.get_json()["strategy_id"] == pillar["id"]
        res = client.put(f"/api/v1/work-items/{item['id']}/strategy", json={"strategy_id": None})
        assert res.get_json()["strategy_id"] is None
        assert client.put(f"/api/v1/work-items/{item['id']}/strategy",
                          json={}).status_code == 400

    def test_secondary_alignment(self, client, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar")
        item = make_item("Checkout")
        url = f"/api/v1/work-items/{item['id']}/strategies"
        res = client.post(url, json={"strategy_id": pillar["id"], "alignment_strength": "strong"})
        assert res.status_code == 201
        assert res.get_json()["alignment_strength"] == "strong"

        assert client.post(url, json={"strategy_id": pillar["id"]}).status_code == 409
        aligned = client.get(f"/api/v1/strategies/{pillar['id']}/work-items").get_json()
        assert aligned["total"] == 1

        assert client.delete(f"{url}/{pillar['id']}").status_code == 200
        assert client.delete(f"{url}/{pillar['id']}").status_code == 404

    def test_invalid_strength(self, client, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar")
        item = make_item("Checkout")
        res = client.post(f"/api/v1/work-items/{item['id']}/strategies",
                          json={"strategy_id": pillar["id"], "alignment_strength": "huge"})
        assert res.status_code == 400

    def test_strategy_from_other_team(self, client, make_item):
        other = client.post("/api/v1/teams", json={"name": "Elsewhere"}).get_json()
        foreign = client.post(f"/api/v1/teams/{other['id']}/strategies",
                              json={"title": "Theirs", "type": "pillar"}).get_json()
        item = make_item("Checkout")
        res = client.put(f"/api/v1/work-items/{item['id']}/strategy",
                         json={"strategy_id": foreign["id"]})
        assert res.status_code == 400


class TestProgressAndDeletion:
    def test_rollup(self, client, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar", progress_mode="auto")
        a = create_strategy("A", "objective", parent=pillar, progress_mode="auto")
        create_strategy("B", "objective", parent=pillar, progress_mode="auto")

        done = make_item("Done", status="completed")
        open_item = make_item("Open")
        for item in (done, open_item):
            client.put(f"/api/v1/work-items/{item['id']}/strategy", json={"strategy_id": a["id"]})

        res = client.post(f"/api/v1/strategies/{a['id']}/recalculate")
        assert res.get_json()["calculated_progress"] == 50
        assert res.get_json()["effective_progress"] == 50

        parent = client.get(f"/api/v1/strategies/{pillar['id']}").get_json()
        assert parent["calculated_progress"] == 25

    def test_manual_mode_ignores_calculation(self, client, create_strategy):
        pillar = create_strategy("Grow", "pillar", progress=60)
        body = client.post(f"/api/v1/strategies/{pillar['id']}/recalculate").get_json()
        assert body["effective_progress"] == 60

    def test_delete_subtree_unaligns_items(self, client, team, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar")
        objective = create_strategy("A", "objective", parent=pillar)
        item = make_item("Checkout")
        client.put(f"/api/v1/work-items/{item['id']}/strategy",
                   json={"strategy_id": objective["id"]})
        client.post(f"/api/v1/work-items/{item['id']}/strategies",
                    json={"strategy_id": objective["id"]})

        assert client.delete(f"/api/v1/strategies/{pillar['id']}").status_code == 200
        assert client.get(f"/api/v1/strategies/{objective['id']}").status_code == 404
        assert client.get(f"/api/v1/work-items/{item['id']}").get_json()["strategy_id"] is None
        listing = client.get(f"/api/v1/teams/{team['id']}/strategies").get_json()
        assert listing["total"] == 0

    def test_stats(self, client, team, create_strategy, make_item):
        pillar = create_strategy("Grow", "pillar", progress=40)
        aligned = make_item("Aligned")
        make_item("Loose")
        client.put(f"/api/v1/work-items/{aligned['id']}/strategy",
                   json={"strategy_id": pillar["id"]})

        body = client.get(f"/api/v1/teams/{team['id']}/strategies/stats").get_json()
        assert body["by_type"]["pillar"] == 1
        assert body["alignment_coverage"]["coverage_percent"] == 50
        assert body["progress_by_type"] == [{"type": "pillar", "avg_progress": 40, "count": 1}]
        assert body["top_strategies_by_alignment"][0]["aligned_count"] == 1
