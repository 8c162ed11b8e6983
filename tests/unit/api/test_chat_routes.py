"""
Tests for the chat router.

Requests go through the full app (middleware, dependencies, routes) with
the model client mocked.
"""

import json
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from divecoach.api.deps import build_services
from divecoach.api.routes.chat import IDENTIFICATION_REPLY, INVALID_MESSAGE_REPLY
from divecoach.main import create_app
from divecoach.services.prompts import MEDICAL_DISCLAIMER

STRUCTURED = "/api/openai/chat"
GENERAL = "/api/chat/general"


class TestRequestValidation:
    def test_empty_message_is_400(self, client) -> None:
        response = client.post(STRUCTURED, json={"message": "   ", "userId": "diver-1"})

        assert response.status_code == 400
        body = response.json()
        assert body["assistantMessage"]["content"] == INVALID_MESSAGE_REPLY
        assert body["metadata"]["error"] is True

    def test_missing_identity_is_401(self, client) -> None:
        response = client.post(GENERAL, json={"message": "hello"})

        assert response.status_code == 401
        assert response.json()["assistantMessage"]["content"] == IDENTIFICATION_REPLY

    def test_nickname_identifies_member(self, client) -> None:
        response = client.post(GENERAL, json={"message": "hello", "nickname": "seal"})
        assert response.status_code == 200

    def test_validation_does_not_call_model(self, client, mock_llm) -> None:
        client.post(STRUCTURED, json={"message": "", "userId": "diver-1"})
        mock_llm.complete.assert_not_awaited()


class TestStructuredChat:
    def test_reply_shape(self, client) -> None:
        response = client.post(
            STRUCTURED,
            json={"message": "How do I improve my equalization?", "userId": "diver-1", "embedMode": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["assistantMessage"]["role"] == "assistant"
        report = json.loads(body["assistantMessage"]["content"])
        assert report["medical_disclaimer"] == MEDICAL_DISCLAIMER
        metadata = body["metadata"]
        assert metadata["userLevel"] == "beginner"
        assert metadata["embedMode"] is True
        assert metadata["cached"] is False
        assert metadata["fallbackUsed"] is False
        assert "errorType" not in metadata

    def test_timeout_returns_fallback_200(self, client, mock_llm) -> None:
        mock_llm.complete.side_effect = TimeoutError()

        response = client.post(STRUCTURED, json={"message": "help", "userId": "diver-1"})

        assert response.status_code == 200
        metadata = response.json()["metadata"]
        assert metadata["fallbackUsed"] is True
        assert metadata["errorType"] == "timeout"
        assert mock_llm.complete.await_count == 3


class TestGeneralChat:
    def test_reply_and_cache(self, client, mock_llm) -> None:
        payload = {"message": "How do I relax before a dive?", "userId": "diver-1"}

        first = client.post(GENERAL, json=payload)
        second = client.post(GENERAL, json=payload)

        assert first.json()["assistantMessage"]["content"] == "Relax and equalize early."
        assert second.json()["metadata"]["cached"] is True
        assert mock_llm.complete.await_count == 1

    def test_unexpected_failure_returns_error_reply(self, client, services) -> None:
        services.coaching.general_chat = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.post(GENERAL, json={"message": "hello", "userId": "diver-1"})

        assert response.status_code == 200
        metadata = response.json()["metadata"]
        assert metadata["error"] is True
        assert metadata["fallbackUsed"] is True
        assert metadata["errorType"] == "unknown_error"

        errors = client.get("/api/monitor/error-tracking").json()
        assert errors["stats"]["errorsBySeverity"] == {"high": 1}
        assert errors["errors"][0]["endpoint"] == GENERAL


class TestRequestId:
    def test_request_id_echoed(self, client) -> None:
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client) -> None:
        response = client.get("/health")
        assert response.headers["X-Request-ID"]


class TestLenientBody:
    @pytest.mark.parametrize(
        "extra",
        [
            {"profile": None},
            {"diveLogs": None},
            {"history": None, "embedMode": None, "analysisRequested": None},
            {"diveLogs": [{"discipline": "CWT", "targetDepth": "", "reachedDepth": "  "}]},
            {"diveLogs": [{"discipline": "STA", "totalDiveTime": 245}]},
        ],
    )
    def test_nullable_and_blank_fields_accepted(self, client, extra) -> None:
        response = client.post(GENERAL, json={"message": "analyze my dives", "userId": "diver-1", **extra})

        assert response.status_code == 200
        assert response.json()["metadata"]["fallbackUsed"] is False

    def test_null_message_is_400(self, client) -> None:
        response = client.post(GENERAL, json={"message": None, "userId": "diver-1"})
        assert response.status_code == 400


def test_unprompted_yes_skips_dive_log_source(api_settings, mock_llm) -> None:
    dive_logs = AsyncMock()
    services = build_services(api_settings, llm=mock_llm, dive_logs=dive_logs)

    with TestClient(create_app(services=services)) as client:
        response = client.post(GENERAL, json={"message": "yes", "userId": "diver-1", "diveLogs": []})

    assert response.status_code == 200
    metadata = response.json()["metadata"]
    assert metadata["analysisIntent"] is False
    assert metadata["diveContext"] is False
    dive_logs.fetch_recent.assert_not_awaited()
