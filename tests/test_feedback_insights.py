"""
Work item feedback, team insights and the public feedback/voting surface.
"""

import pytest


@pytest.fixture()
def item(make_item):
    return make_item("Checkout")


@pytest.fixture()
def give_feedback(client, item):
    def _give(source="user", content="Too many steps", **fields):
        payload = {"source": source, "source_name": "Sam", "content": content, **fields}
        res = client.post(f"/api/v1/work-items/{item['id']}/feedback", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _give


@pytest.fixture()
def public_workspace(client, workspace):
    client.put(f"/api/v1/workspaces/{workspace['id']}", json={"public_feedback_enabled": True})
    return workspace


def _submit(client, workspace_id, **fields):
    payload = {"title": "Export to CSV", "description": "I need to share reports with finance."}
    payload.update(fields)
    return client.post(f"/api/v1/public/workspaces/{workspace_id}/feedback", json=payload)


def _vote(client, insight_id, vote_type, ip="10.0.0.1", email=None):
    return client.post(f"/api/v1/public/insights/{insight_id}/vote",
                       json={"vote_type": vote_type, "email": email},
                       headers={"X-Forwarded-For": f"{ip}, 172.16.0.1"})


class TestFeedback:
    def test_customer_feedback_is_high_priority(self, give_feedback):
        assert give_feedback(source="customer")["priority"] == "high"
        assert give_feedback(source="internal")["priority"] == "low"

    def test_explicit_priority(self, give_feedback):
        assert give_feedback(source="customer", priority="low")["priority"] == "low"

    def test_validation(self, client, item):
        url = f"/api/v1/work-items/{item['id']}/feedback"
        assert client.post(url, json={"source": "partner", "source_name": "x",
                                      "content": "y"}).status_code == 400
        assert client.post(url, json={"source": "user", "content": "y"}).status_code == 400
        assert client.post(url, json={"source": "user", "source_name": "x",
                                      "content": " "}).status_code == 400

    def test_notify_owner_without_creator(self, client, item):
        res = client.post(f"/api/v1/work-items/{item['id']}/feedback", json={
            "source": "user", "source_name": "Sam", "content": "Love it", "notify_owner": True,
        })
        assert res.status_code == 201

    def test_lists_and_filters(self, client, team, item, give_feedback):
        give_feedback(source="customer")
        give_feedback(source="internal")
        assert client.get(f"/api/v1/work-items/{item['id']}/feedback").get_json()["total"] == 2
        body = client.get(f"/api/v1/teams/{team['id']}/feedback?priority=high").get_json()
        assert [f["source"] for f in body["items"]] == ["customer"]

    def test_stats(self, client, team, give_feedback):
        give_feedback(source="customer")
        give_feedback(source="user")
        stats = client.get(f"/api/v1/teams/{team['id']}/feedback/stats").get_json()
        assert stats["total"] == 2
        assert stats["by_source"] == {"customer": 1, "internal": 0, "user": 1}
        assert stats["by_status"]["pending"] == 2

    def test_update_rejects_bad_status(self, client, give_feedback):
        fb = give_feedback()
        res = client.put(f"/api/v1/feedback/{fb['id']}", json={"status": "lost"})
        assert res.status_code == 400


class TestTriage:
    @pytest.mark.parametrize("decision, status", [
        ("implement", "reviewed"),
        ("defer", "deferred"),
    ])
    def test_decisions(self, client, give_feedback, decision, status):
        fb = give_feedback()
        res = client.post(f"/api/v1/feedback/{fb['id']}/triage", json={"decision": decision})
        assert res.status_code == 200
        assert res.get_json()["status"] == status
        assert res.get_json()["decision_at"]

    def test_reject_requires_reason(self, client, give_feedback):
        fb = give_feedback()
        url = f"/api/v1/feedback/{fb['id']}/triage"
        assert client.post(url, json={"decision": "reject"}).status_code == 400
        res = client.post(url, json={"decision": "reject", "reason": "Out of scope"})
        assert res.get_json()["status"] == "rejected"
        assert res.get_json()["decision_reason"] == "Out of scope"

    def test_unknown_decision(self, client, give_feedback):
        fb = give_feedback()
        res = client.post(f"/api/v1/feedback/{fb['id']}/triage", json={"decision": "maybe"})
        assert res.status_code == 400

    def test_convert_to_work_item(self, client, workspace, give_feedback):
        fb = give_feedback(content="Add Apple Pay")
        res = client.post(f"/api/v1/feedback/{fb['id']}/convert",
                          json={"work_item_type": "enhancement", "work_item_name": "Apple Pay"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["feedback"]["status"] == "implemented"
        assert body["feedback"]["implemented_in_id"] == body["work_item"]["id"]
        assert body["work_item"]["purpose"] == "Add Apple Pay"
        assert body["work_item"]["workspace_id"] == workspace["id"]

    def test_convert_requires_valid_type(self, client, give_feedback):
        fb = give_feedback()
        res = client.post(f"/api/v1/feedback/{fb['id']}/convert",
                          json={"work_item_type": "epic", "work_item_name": "X"})
        assert res.status_code == 400

    def test_feedback_removed_with_work_item(self, client, item, give_feedback):
        fb = give_feedback()
        client.delete(f"/api/v1/work-items/{item['id']}")
        assert client.get(f"/api/v1/feedback/{fb['id']}").status_code == 404

    def test_converted_link_cleared_when_new_item_deleted(self, client, give_feedback):
        fb = give_feedback()
        body = client.post(f"/api/v1/feedback/{fb['id']}/convert",
                           json={"work_item_type": "feature", "work_item_name": "New"}).get_json()
        client.delete(f"/api/v1/work-items/{body['work_item']['id']}")
        assert client.get(f"/api/v1/feedback/{fb['id']}").get_json()["implemented_in_id"] is None


class TestInsights:
    def test_create_defaults(self, client, team):
        res = client.post(f"/api/v1/teams/{team['id']}/insights", json={"title": "Slow search"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["sentiment"] == "neutral"
        assert body["status"] == "new"
        assert body["upvote_count"] == 0

    def test_validation(self, client, team):
        url = f"/api/v1/teams/{team['id']}/insights"
        assert client.post(url, json={}).status_code == 400
        assert client.post(url, json={"title": "X", "impact_score": 11}).status_code == 400
        assert client.post(url, json={"title": "X", "sentiment": "angry"}).status_code == 400

    def test_search_and_stats(self, client, team):
        url = f"/api/v1/teams/{team['id']}/insights"
        client.post(url, json={"title": "Slow search", "sentiment": "negative"})
        client.post(url, json={"title": "Great UI", "pain_point": "search is fine",
                               "sentiment": "positive"})
        client.post(url, json={"title": "Billing"})
        assert client.get(f"{url}?search=search").get_json()["total"] == 2
        stats = client.get(f"{url}/stats").get_json()
        assert stats["total"] == 3
        assert stats["by_sentiment"]["negative"] == 1

    def test_update_and_delete(self, client, team):
        insight = client.post(f"/api/v1/teams/{team['id']}/insights",
                              json={"title": "Slow"}).get_json()
        res = client.put(f"/api/v1/insights/{insight['id']}", json={"status": "actionable"})
        assert res.get_json()["status"] == "actionable"
        assert client.delete(f"/api/v1/insights/{insight['id']}").status_code == 200
        assert client.get(f"/api/v1/insights/{insight['id']}").status_code == 404


class TestPublicFeedback:
    def test_submission_creates_insight(self, client, team, public_workspace):
        res = _submit(client, public_workspace["id"], name="Pat")
        assert res.status_code == 201
        body = res.get_json()
        assert body["success"] is True
        assert body["message"] == "Thank you for your feedback!"

        insight = client.get(f"/api/v1/insights/{body['id']}").get_json()
        assert insight["source"] == "feedback"
        assert insight["tags"] == ["public-feedback"]
        assert insight["impact_score"] == 5
        assert insight["customer_name"] == "Pat"

    def test_honeypot_reports_success_but_stores_nothing(self, client, team, public_workspace):
        res = _submit(client, public_workspace["id"], website="http://spam.example")
        assert res.status_code == 201
        assert "id" not in res.get_json()
        assert client.get(f"/api/v1/teams/{team['id']}/insights").get_json()["total"] == 0

    def test_disabled_workspace(self, client, workspace):
        assert _submit(client, workspace["id"]).status_code == 403

    def test_length_limits(self, client, public_workspace):
        assert _submit(client, public_workspace["id"], title="Hi").status_code == 400
        assert _submit(client, public_workspace["id"], description="short").status_code == 400

    def test_public_read(self, client, team, workspace):
        private = client.post(f"/api/v1/teams/{team['id']}/insights",
                              json={"title": "Internal", "workspace_id": workspace["id"]}).get_json()
        assert client.get(f"/api/v1/public/insights/{private['id']}").status_code == 403

        client.put(f"/api/v1/insights/{private['id']}", json={"public_share_enabled": True})
        body = client.get(f"/api/v1/public/insights/{private['id']}").get_json()
        assert set(body) == {"id", "title", "pain_point", "sentiment",
                             "upvote_count", "downvote_count"}


class TestVoting:
    @pytest.fixture()
    def insight_id(self, client, public_workspace):
        return _submit(client, public_workspace["id"]).get_json()["id"]

    def test_upvote(self, client, insight_id):
        res = _vote(client, insight_id, "up")
        assert res.status_code == 200
        body = res.get_json()
        assert body["message"] == "Vote recorded"
        assert (body["upvote_count"], body["downvote_count"]) == (1, 0)

    def test_same_vote_twice_rejected(self, client, insight_id):
        _vote(client, insight_id, "up")
        res = _vote(client, insight_id, "up")
        assert res.status_code == 400
        assert res.get_json()["error"] == "You have already voted"

    def test_switching_moves_the_count(self, client, insight_id):
        _vote(client, insight_id, "up")
        body = _vote(client, insight_id, "down").get_json()
        assert body["message"] == "Vote updated"
        assert (body["upvote_count"], body["downvote_count"]) == (0, 1)

    def test_distinct_voters(self, client, insight_id):
        _vote(client, insight_id, "up", ip="10.0.0.1")
        _vote(client, insight_id, "up", ip="10.0.0.2")
        body = _vote(client, insight_id, "up", ip="10.0.0.1", email="fan@acme.io").get_json()
        assert body["upvote_count"] == 3

    def test_invalid_vote_type(self, client, insight_id):
        assert _vote(client, insight_id, "sideways").status_code == 400

    def test_anonymous_votes_can_be_disabled(self, client, public_workspace, insight_id):
        client.put(f"/api/v1/workspaces/{public_workspace['id']}",
                   json={"voting_settings": {"allow_anonymous": False}})
        assert _vote(client, insight_id, "up").status_code == 400
        assert _vote(client, insight_id, "up", email="fan@acme.io").status_code == 200

    def test_voting_disabled(self, client, public_workspace, insight_id):
        client.put(f"/api/v1/workspaces/{public_workspace['id']}",
                   json={"voting_settings": {"enabled": False}})
        assert _vote(client, insight_id, "up").status_code == 403

    def test_missing_vote_type(self, client, insight_id):
        res = client.post(f"/api/v1/public/insights/{insight_id}/vote", json={})
        assert res.status_code == 400
