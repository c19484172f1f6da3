from unittest.mock import patch


class TestHealthCheck:
    def test_health_check_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "services" in data

    def test_health_check_reports_database_status(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["database"]["status"] == "up"
        assert "response_time_ms" in data["services"]["database"]

    def test_health_check_reports_cache_status(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["cache"]["status"] == "up"
        assert "response_time_ms" in data["services"]["cache"]

    def test_health_check_reports_realtime_status(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["realtime"]["status"] == "up"

    def test_broken_broadcaster_degrades_without_failing(self, client, broadcaster):
        with patch.object(broadcaster, "ping", side_effect=ConnectionError("redis down")):
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["services"]["realtime"]["status"] == "degraded"

    def test_health_check_reports_outbox_backlog(self, client):
        response = client.get("/health")
        outbox = response.json()["services"]["outbox"]
        assert outbox["status"] == "up"
        assert outbox["backlog"] == 0
