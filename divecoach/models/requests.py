"""
Request Models

Pydantic models for chat and monitoring request bodies. Field names are
snake_case with camelCase aliases matching what the chat widget sends.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from divecoach.models.domain import DiveLog, Severity


class HistoryMessage(BaseModel):
    """One earlier turn of the conversation."""

    role: Literal["user", "assistant", "system"]
    content: str = ""


class ChatRequest(BaseModel):
    """
    Body of POST /api/openai/chat and POST /api/chat/general.

    Message emptiness and user identification are checked by the route so
    that both produce a coaching-style reply instead of a 422.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str = ""
    user_id: Optional[str] = Field(default=None, alias="userId")
    nickname: Optional[str] = None
    profile: dict[str, Any] = Field(default_factory=dict)
    embed_mode: bool = Field(default=False, alias="embedMode")
    dive_logs: list[DiveLog] = Field(default_factory=list, alias="diveLogs")
    analysis_requested: bool = Field(default=False, alias="analysisRequested")
    history: list[HistoryMessage] = Field(default_factory=list)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("message", mode="before")
    @classmethod
    def null_message_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("profile", mode="before")
    @classmethod
    def null_profile_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("dive_logs", "history", mode="before")
    @classmethod
    def null_list_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("embed_mode", "analysis_requested", mode="before")
    @classmethod
    def null_flag_is_false(cls, v: Any) -> Any:
        return False if v is None else v

    @property
    def user_identifier(self) -> Optional[str]:
        return self.user_id or self.nickname or None


class UsageMetricRequest(BaseModel):
    """Body of POST /api/monitor/usage-analytics."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(..., alias="userId", min_length=1)
    endpoint: str = Field(..., min_length=1)
    tokens_used: int = Field(default=0, ge=0, alias="tokensUsed")
    prompt_tokens: Optional[int] = Field(default=None, ge=0, alias="promptTokens")
    completion_tokens: Optional[int] = Field(default=None, ge=0, alias="completionTokens")
    response_time_ms: int = Field(default=0, ge=0, alias="responseTime")
    model: str = "gpt-4"
    success: bool = True
    error_type: Optional[str] = Field(default=None, alias="errorType")
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorReportRequest(BaseModel):
    """Body of POST /api/monitor/error-tracking."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    endpoint: str = Field(..., min_length=1)
    error_message: str = Field(..., alias="errorMessage", min_length=1)
    error_type: Optional[str] = Field(default=None, alias="errorType")
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    severity: Optional[Severity] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    context: dict[str, Any] = Field(default_factory=dict)
