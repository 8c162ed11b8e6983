"""
API test fixtures: the app built by create_app() over an in-memory service
graph with a mocked model client and zero backoff delays.
"""

import pytest
from fastapi.testclient import TestClient

from divecoach.api.deps import CoachServices, build_services
from divecoach.core.config import Settings
from divecoach.main import create_app


@pytest.fixture
def api_settings() -> Settings:
    return Settings(
        environment="development",
        redis_url="",
        openai_api_key="",
        pinecone_api_key="",
        supabase_url="",
        supabase_key="",
        retry_base_delay_seconds=0.0,
        retry_jitter_ratio=0.0,
    )


@pytest.fixture
def services(api_settings, mock_llm) -> CoachServices:
    return build_services(api_settings, llm=mock_llm)


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client
