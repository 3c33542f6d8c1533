"""
Work item API tests — CRUD, filtering, duplication, workflow and status rollup.
"""

import pytest


class TestWorkItemCRUD:
    def test_create_with_defaults(self, make_item):
        item = make_item("Checkout")
        assert item["status"] == "not_started"
        assert item["priority"] == "medium"
        assert item["workflow_stage"] == "ideation"
        assert item["stage_history"][0]["stage"] == "ideation"
        assert item["tags"] == []

    def test_create_with_timeline_items(self, make_item):
        item = make_item("Search", timeline_items=[
            {"timeline": "MVP", "name": "Basic search", "difficulty": "Easy"},
            {"timeline": "LONG", "name": "Semantic search", "difficulty": "hard"},
        ])
        assert [t["timeline"] for t in item["timeline_items"]] == ["MVP", "LONG"]
        assert item["timeline_items"][0]["difficulty"] == "easy"

    def test_create_rejects_two_items_in_one_timeline(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items", json={
            "name": "Dup", "type": "feature",
            "timeline_items": [
                {"timeline": "MVP", "name": "a"},
                {"timeline": "MVP", "name": "b"},
            ],
        })
        assert res.status_code == 409
        listing = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items").get_json()
        assert listing["total"] == 0

    def test_create_rejects_unknown_timeline_difficulty(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items", json={
            "name": "Hard mode", "type": "feature",
            "timeline_items": [{"timeline": "MVP", "difficulty": "impossible"}],
        })
        assert res.status_code == 400
        assert "difficulty" in res.get_json()["error"]

    def test_create_rejects_unknown_timeline_phase(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items", json={
            "name": "Phased", "type": "feature",
            "timeline_items": [{"timeline": "SHORT", "phase": "someday"}],
        })
        assert res.status_code == 400

    def test_create_timeline_item_defaults_to_work_item_name(self, make_item):
        item = make_item("Billing", timeline_items=[{"timeline": "MVP"}])
        timeline_item = item["timeline_items"][0]
        assert timeline_item["name"] == "Billing"
        assert timeline_item["phase"] == "planning"
        assert timeline_item["difficulty"] == "medium"

    def test_create_requires_name(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items", json={"name": "  "})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_create_rejects_unknown_type(self, client, workspace):
        res = client.post(f"/api/v1/workspaces/{workspace['id']}/work-items",
                          json={"name": "X", "type": "epic-ish"})
        assert res.status_code == 400

    def test_get_unknown_item(self, client):
        res = client.get("/api/v1/work-items/999")
        assert res.status_code == 404

    def test_update_is_partial_and_ignores_immutable_keys(self, client, make_item):
        item = make_item("Login", purpose="Let users in")
        res = client.put(f"/api/v1/work-items/{item['id']}",
                         json={"priority": "high", "id": 12345, "tags": ["auth"]})
        assert res.status_code == 200
        body = res.get_json()
        assert body["id"] == item["id"]
        assert body["priority"] == "high"
        assert body["purpose"] == "Let users in"
        assert body["tags"] == ["auth"]

    def test_update_list_field_must_be_list(self, client, make_item):
        item = make_item("Login")
        res = client.put(f"/api/v1/work-items/{item['id']}", json={"tags": "auth"})
        assert res.status_code == 400

    def test_update_rejects_non_string_name(self, client, make_item):
        item = make_item("Login")
        res = client.put(f"/api/v1/work-items/{item['id']}", json={"name": 5})
        assert res.status_code == 400
        assert res.get_json()["error"] == "Work item name is required"

    def test_delete_removes_connections(self, client, make_item, connect, workspace):
        a, b = make_item("A"), make_item("B")
        connect(a, b)
        res = client.delete(f"/api/v1/work-items/{a['id']}")
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "id": a["id"]}
        conns = client.get(f"/api/v1/workspaces/{workspace['id']}/connections?status=all")
        assert conns.get_json()["total"] == 0

    def test_delete_unlinks_children(self, client, make_item):
        epic = make_item("Epic", is_epic=True)
        child = make_item("Child", parent_id=epic["id"])
        client.delete(f"/api/v1/work-items/{epic['id']}")
        res = client.get(f"/api/v1/work-items/{child['id']}")
        assert res.get_json()["parent_id"] is None


class TestWorkItemQueries:
    @pytest.fixture()
    def items(self, make_item):
        return [
            make_item("Alpha", priority="low", tags=["web"]),
            make_item("Beta", priority="critical", purpose="Payment flow"),
            make_item("Gamma", priority="high", status="completed", tags=["web", "api"]),
        ]

    def test_filter_by_priority(self, client, workspace, items):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items?priority=high")
        assert [i["name"] for i in res.get_json()["items"]] == ["Gamma"]

    def test_filter_by_tag(self, client, workspace, items):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items?tag=web")
        assert {i["name"] for i in res.get_json()["items"]} == {"Alpha", "Gamma"}

    def test_search_matches_purpose(self, client, workspace, items):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items?search=payment")
        assert [i["name"] for i in res.get_json()["items"]] == ["Beta"]

    def test_blank_search_returns_nothing(self, client, workspace, items):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items?search=%20")
        assert res.get_json()["total"] == 0

    def test_sort_by_priority_desc(self, client, workspace, items):
        res = client.get(
            f"/api/v1/workspaces/{workspace['id']}/work-items?sort_by=priority&direction=desc"
        )
        assert [i["name"] for i in res.get_json()["items"]] == ["Beta", "Gamma", "Alpha"]

    def test_sort_by_name_asc(self, client, workspace, items):
        res = client.get(
            f"/api/v1/workspaces/{workspace['id']}/work-items?sort_by=name&direction=asc"
        )
        assert [i["name"] for i in res.get_json()["items"]] == ["Alpha", "Beta", "Gamma"]

    def test_stats(self, client, workspace, items):
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items/stats")
        stats = res.get_json()
        assert stats["total"] == 3
        assert stats["by_status"]["completed"] == 1
        assert stats["by_priority"]["critical"] == 1
        assert stats["workflow"]["by_stage"]["ideation"] == 3

    def test_overdue(self, client, workspace, make_item):
        late = make_item("Late", planned_end_date="2020-01-01")
        make_item("Done late", planned_end_date="2020-01-01", status="completed")
        res = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items/stats")
        assert res.get_json()["overdue"] == [late["id"]]


class TestValidateAndDuplicate:
    def test_validate_collects_all_errors(self, client):
        res = client.post("/api/v1/work-items/validate", json={"timeline_items": []})
        body = res.get_json()
        assert body["valid"] is False
        assert "Work item name is required" in body["errors"]
        assert "Workspace ID is required" in body["errors"]
        assert "At least one timeline item is required" in body["errors"]

    def test_validate_ok(self, client):
        res = client.post("/api/v1/work-items/validate", json={
            "name": "X", "type": "feature", "workspace_id": 1,
            "timeline_items": [{"timeline": "MVP"}],
        })
        assert res.get_json() == {"valid": True, "errors": []}

    def test_duplicate(self, client, make_item):
        item = make_item("Export", status="in_progress", tags=["csv"], timeline_items=[
            {"timeline": "MVP", "name": "CSV", "difficulty": "easy"},
        ])
        res = client.post(f"/api/v1/work-items/{item['id']}/duplicate")
        assert res.status_code == 201
        copy = res.get_json()
        assert copy["id"] != item["id"]
        assert copy["name"] == "Export (Copy)"
        assert copy["status"] == "not_started"
        assert copy["tags"] == ["csv"]
        assert len(copy["timeline_items"]) == 1


class TestWorkflowAndStatus:
    def test_stage_transition_records_history(self, client, make_item):
        item = make_item("Flow")
        res = client.put(f"/api/v1/work-items/{item['id']}/workflow-stage",
                         json={"stage": "planning", "notes": "Kickoff done"})
        assert res.status_code == 200
        history = res.get_json()["stage_history"]
        assert history[-1]["stage"] == "planning"
        assert history[-1]["previous_stage"] == "ideation"
        assert history[-1]["notes"] == "Kickoff done"

    def test_stage_must_be_known(self, client, make_item):
        item = make_item("Flow")
        res = client.put(f"/api/v1/work-items/{item['id']}/workflow-stage",
                         json={"stage": "shipping"})
        assert res.status_code == 400

    def test_stage_required(self, client, make_item):
        item = make_item("Flow")
        res = client.put(f"/api/v1/work-items/{item['id']}/workflow-stage", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_calculated_status_and_progress(self, client, make_item):
        item = make_item("Rollup")
        wid = item["id"]
        mvp = client.post(f"/api/v1/work-items/{wid}/timeline",
                          json={"timeline": "MVP", "name": "M"}).get_json()
        short = client.post(f"/api/v1/work-items/{wid}/timeline",
                            json={"timeline": "SHORT", "name": "S"}).get_json()
        client.put(f"/api/v1/timeline-items/{mvp['id']}",
                   json={"status": "completed", "progress_percent": 100})
        client.put(f"/api/v1/timeline-items/{short['id']}", json={"progress_percent": 50})

        body = client.get(f"/api/v1/work-items/{wid}/status").get_json()
        assert body["calculated_status"] == "in_progress"
        assert body["calculated_progress"] == 75
        assert body["timeline_breakdown"]["MVP"]["completed"] == 1
        assert body["total_timeline_items"] == 2

    def test_status_without_timeline_items(self, client, make_item):
        item = make_item("Empty")
        body = client.get(f"/api/v1/work-items/{item['id']}/status").get_json()
        assert body["calculated_status"] == "not_started"
        assert body["calculated_progress"] == 0

    def test_children(self, client, make_item):
        epic = make_item("Epic", is_epic=True)
        make_item("Child 1", parent_id=epic["id"])
        make_item("Child 2", parent_id=epic["id"])
        body = client.get(f"/api/v1/work-items/{epic['id']}/children").get_json()
        assert body["is_epic"] is True
        assert body["total"] == 2
