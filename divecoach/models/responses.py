"""
Response Models

Chat replies keep the camelCase keys the widget reads. Serialise with
model_dump(by_alias=True, exclude_none=True).
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatMetadata(BaseModel):
    """Diagnostics returned with every chat reply."""

    model_config = ConfigDict(populate_by_name=True)

    user_level: str = Field(default="beginner", alias="userLevel")
    depth_range: str = Field(default="10m", alias="depthRange")
    context_chunks: int = Field(default=0, alias="contextChunks")
    dive_context: bool = Field(default=False, alias="diveContext")
    processing_time: int = Field(default=0, alias="processingTime")
    embed_mode: bool = Field(default=False, alias="embedMode")
    analysis_intent: bool = Field(default=False, alias="analysisIntent")
    cached: bool = False
    fallback_used: bool = Field(default=False, alias="fallbackUsed")
    error_type: Optional[str] = Field(default=None, alias="errorType")
    error: Optional[bool] = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_message: AssistantMessage = Field(..., alias="assistantMessage")
    metadata: ChatMetadata = Field(default_factory=ChatMetadata)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class HealthResponse(BaseModel):
    status: str
    version: str
    service: str
