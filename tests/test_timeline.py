"""
Timeline item API tests — one item per timeline slot, reorder, duplicate, links.
"""

import pytest


@pytest.fixture()
def work_item(make_item):
    return make_item("Onboarding")


def _add(client, work_item, timeline, name=None, **fields):
    res = client.post(f"/api/v1/work-items/{work_item['id']}/timeline",
                      json={"timeline": timeline, "name": name or timeline, **fields})
    return res


class TestTimelineItems:
    def test_add_and_list(self, client, work_item):
        assert _add(client, work_item, "MVP", difficulty="Hard").status_code == 201
        assert _add(client, work_item, "SHORT").status_code == 201
        body = client.get(f"/api/v1/work-items/{work_item['id']}/timeline").get_json()
        assert body["total"] == 2
        assert body["items"][0]["difficulty"] == "hard"
        assert body["items"][1]["phase"] == "planning"

    def test_one_item_per_timeline(self, client, work_item):
        _add(client, work_item, "MVP")
        res = _add(client, work_item, "MVP", name="Again")
        assert res.status_code == 409

    def test_invalid_timeline(self, client, work_item):
        res = _add(client, work_item, "NEXT")
        assert res.status_code == 400

    def test_filter_by_difficulty(self, client, work_item):
        _add(client, work_item, "MVP", difficulty="easy")
        _add(client, work_item, "LONG", difficulty="hard")
        body = client.get(
            f"/api/v1/work-items/{work_item['id']}/timeline?difficulty=HARD"
        ).get_json()
        assert [i["timeline"] for i in body["items"]] == ["LONG"]

    def test_update_cannot_move_into_taken_slot(self, client, work_item):
        _add(client, work_item, "MVP")
        short = _add(client, work_item, "SHORT").get_json()
        res = client.put(f"/api/v1/timeline-items/{short['id']}", json={"timeline": "MVP"})
        assert res.status_code == 409

    def test_update_progress_bounds(self, client, work_item):
        item = _add(client, work_item, "MVP").get_json()
        res = client.put(f"/api/v1/timeline-items/{item['id']}", json={"progress_percent": 120})
        assert res.status_code == 400

    def test_delete_renumbers(self, client, work_item):
        first = _add(client, work_item, "MVP").get_json()
        _add(client, work_item, "SHORT")
        _add(client, work_item, "LONG")
        assert client.delete(f"/api/v1/timeline-items/{first['id']}").status_code == 200
        items = client.get(f"/api/v1/work-items/{work_item['id']}/timeline").get_json()["items"]
        assert [(i["timeline"], i["sort_order"]) for i in items] == [("SHORT", 0), ("LONG", 1)]

    def test_stats(self, client, work_item):
        _add(client, work_item, "MVP", difficulty="easy")
        _add(client, work_item, "SHORT", difficulty="easy")
        stats = client.get(f"/api/v1/work-items/{work_item['id']}/timeline/stats").get_json()
        assert stats["total"] == 2
        assert stats["by_timeline"] == {"MVP": 1, "SHORT": 1, "LONG": 0}
        assert stats["by_difficulty"]["easy"] == 2

    def test_validate(self, client):
        body = client.post("/api/v1/timeline-items/validate",
                           json={"name": "", "timeline": "X", "difficulty": "meh"}).get_json()
        assert body["valid"] is False
        assert len(body["errors"]) == 3


class TestReorderAndDuplicate:
    def test_reorder(self, client, work_item):
        mvp = _add(client, work_item, "MVP").get_json()
        _add(client, work_item, "SHORT")
        long_ = _add(client, work_item, "LONG").get_json()
        res = client.put(f"/api/v1/work-items/{work_item['id']}/timeline/reorder",
                         json={"item_id": long_["id"], "new_index": 0})
        assert res.status_code == 200
        order = [i["timeline"] for i in res.get_json()["items"]]
        assert order == ["LONG", "MVP", "SHORT"]
        assert res.get_json()["items"][1]["id"] == mvp["id"]

    def test_reorder_requires_fields(self, client, work_item):
        res = client.put(f"/api/v1/work-items/{work_item['id']}/timeline/reorder", json={})
        assert res.status_code == 400

    def test_duplicate_takes_next_free_slot(self, client, work_item):
        mvp = _add(client, work_item, "MVP", difficulty="hard").get_json()
        _add(client, work_item, "SHORT")
        res = client.post(f"/api/v1/timeline-items/{mvp['id']}/duplicate")
        assert res.status_code == 201
        copy = res.get_json()
        assert copy["timeline"] == "LONG"
        assert copy["name"] == "MVP (Copy)"
        assert copy["difficulty"] == "hard"

    def test_duplicate_when_full(self, client, work_item):
        mvp = _add(client, work_item, "MVP").get_json()
        _add(client, work_item, "SHORT")
        _add(client, work_item, "LONG")
        res = client.post(f"/api/v1/timeline-items/{mvp['id']}/duplicate")
        assert res.status_code == 409


class TestLinks:
    def test_create_list_delete(self, client, work_item, make_item):
        other = make_item("Billing")
        source = _add(client, work_item, "MVP").get_json()
        target = _add(client, other, "MVP").get_json()

        res = client.post(f"/api/v1/timeline-items/{source['id']}/links",
                          json={"target_id": target["id"], "relationship_type": "blocks"})
        assert res.status_code == 201

        links = client.get(f"/api/v1/timeline-items/{target['id']}/links").get_json()
        assert links["incoming"][0]["source_id"] == source["id"]
        assert links["outgoing"] == []

        dup = client.post(f"/api/v1/timeline-items/{source['id']}/links",
                          json={"target_id": target["id"]})
        assert dup.status_code == 409

        res = client.delete(f"/api/v1/timeline-items/{source['id']}/links/{target['id']}")
        assert res.status_code == 200
        res = client.delete(f"/api/v1/timeline-items/{source['id']}/links/{target['id']}")
        assert res.status_code == 404

    def test_self_link_rejected(self, client, work_item):
        item = _add(client, work_item, "MVP").get_json()
        res = client.post(f"/api/v1/timeline-items/{item['id']}/links",
                          json={"target_id": item["id"]})
        assert res.status_code == 400

    def test_unknown_relationship(self, client, work_item, make_item):
        source = _add(client, work_item, "MVP").get_json()
        target = _add(client, make_item("Other"), "MVP").get_json()
        res = client.post(f"/api/v1/timeline-items/{source['id']}/links",
                          json={"target_id": target["id"], "relationship_type": "owns"})
        assert res.status_code == 400

    def test_deleting_item_drops_links(self, client, work_item, make_item):
        source = _add(client, work_item, "MVP").get_json()
        target = _add(client, make_item("Other"), "MVP").get_json()
        client.post(f"/api/v1/timeline-items/{source['id']}/links",
                    json={"target_id": target["id"]})
        client.delete(f"/api/v1/timeline-items/{target['id']}")
        links = client.get(f"/api/v1/timeline-items/{source['id']}/links").get_json()
        assert links["outgoing"] == []
