"""
Core configuration module for divecoach.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the DIVECOACH_ prefix.

Pattern: Pydantic BaseSettings with a cached singleton accessor.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All fields use the DIVECOACH_ prefix for environment variables.
    Example: DIVECOACH_CACHE_TTL_SECONDS=600
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="divecoach",
        description="Name of the service for logging and identification",
    )
    version: str = Field(default="1.0.0", description="Reported service version")
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port the service listens on",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(default="INFO", description="structlog level")
    cors_origins: str = Field(
        default="",
        description="Comma-separated CORS allow-list used outside development",
    )

    # =========================================================================
    # Shared State
    # Empty URL keeps circuit state, cache and monitoring in-process.
    # =========================================================================
    redis_url: str = Field(
        default="",
        description="Redis connection URL for shared resilience state",
    )
    redis_key_prefix: str = Field(default="divecoach:")

    # =========================================================================
    # OpenAI
    # Pattern: SecretStr masks values in logs/repr
    # =========================================================================
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="OpenAI API key",
    )
    openai_model: str = Field(default="gpt-4", description="Chat completion model")
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model used for knowledge retrieval",
    )
    structured_chat_timeout_seconds: float = Field(
        default=15.0,
        ge=1.0,
        le=120.0,
        description="Per-attempt timeout for /api/openai/chat",
    )
    general_chat_timeout_seconds: float = Field(
        default=25.0,
        ge=1.0,
        le=120.0,
        description="Per-attempt timeout for /api/chat/general",
    )

    # =========================================================================
    # Knowledge Base (Pinecone) and Dive Logs (Supabase)
    # =========================================================================
    pinecone_api_key: SecretStr = Field(default=SecretStr(""))
    pinecone_index: str = Field(default="koval-deep-ai")
    knowledge_top_k: int = Field(default=3, ge=1, le=20)
    supabase_url: str = Field(default="")
    supabase_key: SecretStr = Field(default=SecretStr(""))
    dive_log_limit: int = Field(default=10, ge=1, le=100)

    # =========================================================================
    # Retry Configuration
    # =========================================================================
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per upstream call, including the first",
    )
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=30.0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0.0, le=120.0)
    retry_jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Random extra delay as a fraction of the backoff delay",
    )

    # =========================================================================
    # Circuit Breaker Configuration
    # =========================================================================
    circuit_breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of consecutive failures before circuit opens",
    )
    circuit_breaker_cooldown_seconds: float = Field(
        default=300.0,
        ge=1.0,
        le=3600.0,
        description="Seconds the circuit stays open before a trial request",
    )
    circuit_breaker_trial_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Seconds after which an unreported half-open trial is abandoned",
    )

    # =========================================================================
    # Response Cache
    # =========================================================================
    cache_ttl_seconds: int = Field(default=3600, ge=1)
    cache_max_entries: int = Field(default=1000, ge=1)

    # =========================================================================
    # Environment Prefix Configuration
    # =========================================================================
    model_config = {
        "env_prefix": "DIVECOACH_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Field Validators
    # =========================================================================
    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format (empty disables Redis)."""
        if v and not v.startswith(("redis://", "rediss://")):
            raise ValueError("Redis URL must start with redis:// or rediss://")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key.get_secret_value())

    @property
    def pinecone_configured(self) -> bool:
        return bool(self.pinecone_api_key.get_secret_value())

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key.get_secret_value())


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()
