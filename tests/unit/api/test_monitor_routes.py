"""Tests for the /api/monitor router."""

USAGE = "/api/monitor/usage-analytics"
ERRORS = "/api/monitor/error-tracking"


class TestUsageAnalytics:
    def test_record_and_summarize(self, client) -> None:
        recorded = client.post(
            USAGE,
            json={
                "userId": "diver-1",
                "endpoint": "/api/chat/general",
                "tokensUsed": 1000,
                "responseTime": 850,
                "model": "gpt-4",
            },
        )

        assert recorded.status_code == 200
        body = recorded.json()
        assert body["success"] is True
        assert body["id"]
        assert body["costEstimate"] > 0

        summary = client.get(USAGE, params={"timeRange": 7}).json()["summary"]
        assert summary["totalRequests"] == 1
        assert summary["totalTokens"] == 1000
        assert summary["avgResponseTime"] == 850
        assert summary["successRate"] == 100

    def test_user_filter(self, client) -> None:
        for user in ("diver-1", "diver-2"):
            client.post(USAGE, json={"userId": user, "endpoint": "/api/chat/general", "tokensUsed": 10})

        body = client.get(USAGE, params={"userId": "diver-2"}).json()

        assert body["summary"]["totalRequests"] == 1
        assert body["metrics"][0]["user_id"] == "diver-2"
        assert body["timeRange"] == "7 days"

    def test_time_range_bounds(self, client) -> None:
        assert client.get(USAGE, params={"timeRange": 0}).status_code == 422
        assert client.get(USAGE, params={"timeRange": 366}).status_code == 422

    def test_missing_user_rejected(self, client) -> None:
        assert client.post(USAGE, json={"endpoint": "/api/chat/general"}).status_code == 422


class TestErrorTracking:
    def test_report_classifies_message(self, client) -> None:
        reported = client.post(ERRORS, json={"endpoint": "/api/openai/chat", "errorMessage": "Request timed out"})

        assert reported.status_code == 200
        assert reported.json()["success"] is True

        stats = client.get(ERRORS).json()["stats"]
        assert stats["totalErrors"] == 1
        assert stats["errorsByType"] == {"timeout": 1}
        assert stats["errorsBySeverity"] == {"medium": 1}
        assert stats["unresolvedErrors"] == 1

    def test_reported_type_sets_severity(self, client) -> None:
        client.post(
            ERRORS,
            json={"endpoint": "/api/openai/chat", "errorMessage": "quota", "errorType": "quota_exceeded"},
        )
        stats = client.get(ERRORS).json()["stats"]
        assert stats["errorsBySeverity"] == {"critical": 1}

    def test_filters(self, client) -> None:
        client.post(ERRORS, json={"endpoint": "/a", "errorMessage": "x", "severity": "low"})
        client.post(ERRORS, json={"endpoint": "/b", "errorMessage": "y", "severity": "critical"})

        by_severity = client.get(ERRORS, params={"severity": "critical"}).json()
        by_endpoint = client.get(ERRORS, params={"endpoint": "/a"}).json()

        assert [e["endpoint"] for e in by_severity["errors"]] == ["/b"]
        assert [e["severity"] for e in by_endpoint["errors"]] == ["low"]

    def test_invalid_severity_rejected(self, client) -> None:
        assert client.get(ERRORS, params={"severity": "urgent"}).status_code == 422

    def test_missing_message_rejected(self, client) -> None:
        assert client.post(ERRORS, json={"endpoint": "/a"}).status_code == 422


class TestDashboard:
    def test_sections(self, client) -> None:
        client.post("/api/chat/general", json={"message": "hello", "userId": "diver-1"})

        body = client.get("/api/monitor/dashboard").json()

        assert set(body) >= {"performance", "errors", "costs", "health", "summary", "generatedAt"}
        assert body["health"]["healthScore"] == 100
        assert body["summary"]["healthScore"] == 100

    def test_open_circuit_lowers_health(self, client, mock_llm) -> None:
        mock_llm.complete.side_effect = TimeoutError()
        for _ in range(5):
            client.post("/api/chat/general", json={"message": "hello", "userId": "diver-1"})
        client.post("/api/openai/chat", json={"message": "hello", "userId": "diver-1"})

        health = client.get("/api/monitor/dashboard").json()["health"]

        assert health["circuitBreakers"]["/api/chat/general"]["state"] == "open"
        assert health["circuitBreakers"]["/api/openai/chat"]["state"] == "closed"
        assert health["healthScore"] == 50
