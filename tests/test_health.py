"""
Health probes and request middleware.
"""


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live_reports_database(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


class TestRequestMiddleware:
    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_request_id_generated(self, client):
        assert len(client.get("/api/v1/health").headers["X-Request-ID"]) == 12

    def test_unknown_api_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nothing-here"
