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

    def test_health_check_reports_event_bus_handlers(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["event_bus"]["status"] == "up"
        assert data["services"]["event_bus"]["handlers"] > 0

    def test_health_check_unhealthy_without_handlers(self, client):
        with patch("modules.core.views.event_bus.handler_count", return_value=0):
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_health_check_unhealthy_when_database_down(self, client):
        with patch(
            "modules.core.views._check_database", side_effect=RuntimeError("down")
        ):
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["services"]["database"] == {"status": "down"}
