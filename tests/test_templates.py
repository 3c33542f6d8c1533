"""
Workspace templates: visibility, CRUD and application.
"""

import pytest

from app.models import db
from app.services.template_service import SYSTEM_TEMPLATES, seed_system_templates

LAUNCH = "SaaS Product Launch"


@pytest.fixture()
def system_templates():
    seed_system_templates()
    db.session.commit()


def _find(client, team_id, name):
    items = client.get(f"/api/v1/teams/{team_id}/templates").get_json()["items"]
    return next(t for t in items if t["name"] == name)


def _apply(client, workspace_id, template_id, **options):
    return client.post(f"/api/v1/workspaces/{workspace_id}/apply-template",
                       json={"template_id": template_id, **options})


class TestSeeding:
    def test_seed_is_idempotent(self):
        assert seed_system_templates() == len(SYSTEM_TEMPLATES)
        db.session.commit()
        assert seed_system_templates() == 0


class TestTemplateCrud:
    def test_system_templates_listed_first(self, client, team, system_templates):
        client.post(f"/api/v1/teams/{team['id']}/templates", json={"name": "Agency"})
        items = client.get(f"/api/v1/teams/{team['id']}/templates").get_json()["items"]
        assert [t["is_system"] for t in items] == [True, True, False]
        assert items[0]["department_count"] == 3

    def test_category_filter(self, client, team, system_templates):
        body = client.get(f"/api/v1/teams/{team['id']}/templates?category=engineering").get_json()
        assert [t["name"] for t in body["items"]] == ["Mobile App"]

    def test_other_teams_templates_hidden(self, client, team):
        other = client.post("/api/v1/teams", json={"name": "Other"}).get_json()
        client.post(f"/api/v1/teams/{other['id']}/templates", json={"name": "Secret"})
        assert client.get(f"/api/v1/teams/{team['id']}/templates").get_json()["total"] == 0

    def test_create_validation(self, client, team):
        url = f"/api/v1/teams/{team['id']}/templates"
        assert client.post(url, json={}).status_code == 400
        assert client.post(url, json={"name": "X", "category": "legal"}).status_code == 400
        assert client.post(url, json={"name": "X", "template_data": {
            "departments": [{"color": "#000000"}],
        }}).status_code == 400

    def test_update_and_delete_team_template(self, client, team):
        created = client.post(f"/api/v1/teams/{team['id']}/templates",
                              json={"name": "Agency"}).get_json()
        res = client.put(f"/api/v1/templates/{created['id']}",
                         json={"name": "Agency v2", "category": "marketing"})
        assert res.get_json()["name"] == "Agency v2"
        assert client.delete(f"/api/v1/templates/{created['id']}").status_code == 200

    def test_system_templates_are_read_only(self, client, team, system_templates):
        launch = _find(client, team["id"], LAUNCH)
        assert client.put(f"/api/v1/templates/{launch['id']}",
                          json={"name": "Mine"}).status_code == 403
        assert client.delete(f"/api/v1/templates/{launch['id']}").status_code == 403


class TestApplyTemplate:
    def test_apply_creates_everything(self, client, team, workspace, system_templates):
        launch = _find(client, team["id"], LAUNCH)
        res = _apply(client, workspace["id"], launch["id"])
        assert res.status_code == 201
        assert res.get_json() == {
            "success": True,
            "departments_created": 3,
            "work_items_created": 3,
            "tags_added": 2,
        }

        items = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items").get_json()["items"]
        assert len(items) == 3
        assert all(i["tags"] == ["launch", "mvp"] for i in items)
        assert all(i["department_id"] for i in items)

    def test_existing_departments_are_skipped(self, client, team, workspace, system_templates):
        client.post(f"/api/v1/teams/{team['id']}/departments", json={"name": "engineering"})
        launch = _find(client, team["id"], LAUNCH)
        body = _apply(client, workspace["id"], launch["id"]).get_json()
        assert body["departments_created"] == 2
        assert body["work_items_created"] == 3
        assert body["errors"] == ['Department "Engineering" already exists, skipped']

    def test_options(self, client, team, workspace, system_templates):
        launch = _find(client, team["id"], LAUNCH)
        body = _apply(client, workspace["id"], launch["id"],
                      create_departments=False, add_tags=False).get_json()
        assert body["departments_created"] == 0
        assert body["tags_added"] == 0
        items = client.get(f"/api/v1/workspaces/{workspace['id']}/work-items").get_json()["items"]
        assert all(i["department_id"] is None and i["tags"] == [] for i in items)

    def test_requires_template_id(self, client, workspace):
        assert client.post(f"/api/v1/workspaces/{workspace['id']}/apply-template",
                           json={}).status_code == 400

    def test_foreign_team_template(self, client, workspace):
        other = client.post("/api/v1/teams", json={"name": "Other"}).get_json()
        foreign = client.post(f"/api/v1/teams/{other['id']}/templates",
                              json={"name": "Theirs"}).get_json()
        assert _apply(client, workspace["id"], foreign["id"]).status_code == 403

    def test_members_cannot_apply(self, client, make_user, add_member, as_user, system_templates):
        owner = make_user("owner@acme.io")
        team = client.post("/api/v1/teams", json={"name": "T"}, headers=as_user(owner)).get_json()
        ws = client.post(f"/api/v1/teams/{team['id']}/workspaces", json={"name": "W"},
                         headers=as_user(owner)).get_json()
        dev = make_user("dev@acme.io")
        add_member(team["id"], dev)
        launch = _find(client, team["id"], LAUNCH)
        res = client.post(f"/api/v1/workspaces/{ws['id']}/apply-template",
                          json={"template_id": launch["id"]}, headers=as_user(dev))
        assert res.status_code == 403
