"""
Team analytics dashboards.
"""

from app.services.analytics_service import TREND_WEEKS, format_label


def _get(client, team_id, view, **params):
    query = "&".join(f"{k}={v}" for k, v in params.items())
    res = client.get(f"/api/v1/teams/{team_id}/analytics/{view}?{query}")
    assert res.status_code == 200, res.get_json()
    return res.get_json()


class TestHelpers:
    def test_format_label(self):
        assert format_label("in_progress") == "In Progress"
        assert format_label("key_result") == "Key Result"


class TestOverview:
    def test_empty_team(self, client, team):
        body = _get(client, team["id"], "overview")
        assert body["totalWorkItems"] == 0
        assert body["completionRate"] == 0
        assert len(body["completionTrend"]) == TREND_WEEKS
        assert body["recentActivity"] == []

    def test_counts(self, client, team, make_item):
        make_item("A", status="completed")
        make_item("B", status="in_progress")
        make_item("C", status="blocked", type="bug")
        make_item("D")

        body = _get(client, team["id"], "overview")
        assert body["totalWorkItems"] == 4
        assert body["completedCount"] == 1
        assert body["inProgressCount"] == 1
        assert body["blockedCount"] == 1
        assert body["completionRate"] == 25
        assert {"name": "Bug", "value": 1} in body["byType"]
        assert body["completionTrend"][-1]["value"] == 1
        assert len(body["recentActivity"]) == 4
        types = {a["work_item_name"]: a["type"] for a in body["recentActivity"]}
        assert types == {"A": "completed", "B": "updated", "C": "blocked", "D": "created"}

    def test_workspace_scope(self, client, team, workspace, make_item):
        make_item("In scope")
        other = client.post(f"/api/v1/teams/{team['id']}/workspaces",
                            json={"name": "Other"}).get_json()
        client.post(f"/api/v1/workspaces/{other['id']}/work-items", json={"name": "Elsewhere"})

        assert _get(client, team["id"], "overview")["totalWorkItems"] == 2
        scoped = _get(client, team["id"], "overview", workspace_id=workspace["id"])
        assert scoped["totalWorkItems"] == 1

    def test_workspace_of_another_team(self, client, team):
        other = client.post("/api/v1/teams", json={"name": "Other"}).get_json()
        ws = client.post(f"/api/v1/teams/{other['id']}/workspaces", json={"name": "W"}).get_json()
        res = client.get(f"/api/v1/teams/{team['id']}/analytics/overview?workspace_id={ws['id']}")
        assert res.status_code == 400

    def test_non_member(self, client, make_user, as_user):
        owner = make_user("owner@acme.io")
        team = client.post("/api/v1/teams", json={"name": "T"}, headers=as_user(owner)).get_json()
        outsider = make_user("out@acme.io")
        res = client.get(f"/api/v1/teams/{team['id']}/analytics/overview",
                         headers=as_user(outsider))
        assert res.status_code == 403


class TestDependencies:
    def test_blocked_risk_and_health(self, client, team, make_item, connect):
        a, b = make_item("A"), make_item("B")
        c, d = make_item("C", status="completed"), make_item("D")
        connect(a, b, "blocks")
        connect(c, d, "dependency")

        body = _get(client, team["id"], "dependencies")
        assert body["totalDependencies"] == 2
        assert body["byType"] == [{"name": "Blocks", "value": 1},
                                  {"name": "Dependency", "value": 1}]
        assert body["blockedCount"] == 1
        assert body["blockedItems"][0]["name"] == "B"
        assert body["blockedItems"][0]["blocked_by"] == ["A"]
        assert [(r["name"], r["risk_score"]) for r in body["riskItems"]] == [("B", 45)]
        assert body["criticalPath"]["length"] == 2
        assert body["healthScore"] == 80

    def test_no_connections(self, client, team, make_item):
        make_item("Solo")
        body = _get(client, team["id"], "dependencies")
        assert body["criticalPath"] == {"length": 0, "items": []}
        assert body["healthScore"] == 100

    def test_inactive_connections_ignored(self, client, team, make_item, connect):
        conn = connect(make_item("A"), make_item("B"), "blocks")
        client.put(f"/api/v1/connections/{conn['id']}/status", json={"status": "inactive"})
        assert _get(client, team["id"], "dependencies")["totalDependencies"] == 0


class TestAlignment:
    def test_alignment_by_pillar(self, client, team, make_item):
        url = f"/api/v1/teams/{team['id']}/strategies"
        pillar = client.post(url, json={"title": "Grow", "type": "pillar",
                                        "progress": 40}).get_json()
        objective = client.post(url, json={"title": "EU", "type": "objective",
                                           "parent_id": pillar["id"]}).get_json()
        aligned = make_item("Aligned")
        make_item("Loose")
        client.put(f"/api/v1/work-items/{aligned['id']}/strategy",
                   json={"strategy_id": objective["id"]})

        body = _get(client, team["id"], "alignment")
        assert body["totalStrategies"] == 2
        assert body["alignedWorkItemCount"] == 1
        assert body["unalignedWorkItemCount"] == 1
        assert body["alignmentRate"] == 50
        assert body["progressByPillar"] == [
            {"id": pillar["id"], "name": "Grow", "progress": 40, "workItemCount": 1},
        ]
        assert [u["name"] for u in body["unalignedItems"]] == ["Loose"]


class TestPerformance:
    def test_owners_and_overdue(self, client, team, make_item):
        make_item("A", owner="Ana", planned_end_date="2020-01-01")
        make_item("B", owner="Ana", status="completed", planned_end_date="2020-01-01")
        make_item("C")

        body = _get(client, team["id"], "performance")
        assert body["totalWorkItems"] == 3
        assert body["byOwner"] == [{"name": "Ana", "value": 2}, {"name": "Unassigned", "value": 1}]
        assert body["overdueCount"] == 1
        assert body["completionRate"] == 33
        assert body["velocityTrend"][-1]["value"] == 1
        assert body["avgCycleTimeDays"] == 0.0
