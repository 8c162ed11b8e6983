"""
OpenAI Chat Client

Thin async wrapper around openai.AsyncOpenAI for chat completions and
embeddings. One call = one attempt: the SDK's own retries are disabled and
retrying is left to RetryExecutor, which also sees every failure.

Each completion is bounded by asyncio.wait_for so a hung connection surfaces
as TimeoutError (classified as a retryable timeout).
"""

import asyncio
from typing import Any, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from divecoach.core.exceptions import UpstreamError

SERVICE_NAME = "openai"


class CompletionResult(BaseModel):
    """Text and token usage of one chat completion."""

    content: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: int = 0


class OpenAIChatClient:
    """
    Chat completions and embeddings against the OpenAI API.

    Args:
        api_key: OpenAI API key
        model: Default chat model
        embedding_model: Model for knowledge-base query embeddings
        client: Pre-built AsyncOpenAI (tests inject a mock)
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4",
        embedding_model: str = "text-embedding-3-small",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self._model = model
        self._embedding_model = embedding_model

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        json_mode: bool = False,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Raises:
            TimeoutError: No response within timeout_seconds.
            UpstreamError: The response had no usable content.
            openai.APIError: Anything the SDK raises, unchanged.
        """
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if top_p is not None:
            kwargs["top_p"] = top_p
        if frequency_penalty is not None:
            kwargs["frequency_penalty"] = frequency_penalty
        if presence_penalty is not None:
            kwargs["presence_penalty"] = presence_penalty
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await asyncio.wait_for(
            self._client.chat.completions.create(**kwargs),
            timeout=timeout_seconds,
        )

        if not response or not response.choices:
            raise UpstreamError("Invalid response structure from OpenAI", service=SERVICE_NAME)
        choice = response.choices[0]
        content = (choice.message.content or "").strip() if choice.message else ""
        if not content:
            raise UpstreamError("Empty response content from OpenAI", service=SERVICE_NAME)

        usage = response.usage
        return CompletionResult(
            content=content,
            model=getattr(response, "model", None) or self._model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )

    async def embed(self, text: str) -> list[float]:
        """Embedding vector for text."""
        response = await self._client.embeddings.create(model=self._embedding_model, input=text)
        if not response.data:
            raise UpstreamError("No embedding data returned from OpenAI", service=SERVICE_NAME)
        return list(response.data[0].embedding)

    async def close(self) -> None:
        await self._client.close()
