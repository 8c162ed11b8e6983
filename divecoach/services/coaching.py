"""
Coaching Service

Answers member chat messages for the two chat endpoints:

- structured_chat: JSON coaching report (POST /api/openai/chat)
- general_chat: conversational coaching text (POST /api/chat/general)

Both share request preparation (level, intent, knowledge, dive logs) and the
resilience layer: cache lookup, model call through RetryExecutor, usage
recording, and a categorised fallback reply when the model cannot answer.
Callers always get a ChatResponse; upstream failures never propagate.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from divecoach.clients.dive_logs import DiveLogRepository
from divecoach.clients.knowledge import KnowledgeBaseClient
from divecoach.clients.openai_chat import CompletionResult, OpenAIChatClient
from divecoach.core.exceptions import CacheError, CoachError
from divecoach.models.domain import DiveData, DiveLog, UsageRecord
from divecoach.models.requests import ChatRequest
from divecoach.models.responses import AssistantMessage, ChatMetadata, ChatResponse
from divecoach.observability.logging import get_logger
from divecoach.observability.metrics import record_fallback_response
from divecoach.resilience.classification import classify_error
from divecoach.resilience.retry import RetryContext, RetryExecutor
from divecoach.services import prompts
from divecoach.services.cache import ResponseCache
from divecoach.services.dive_context import (
    build_dive_log_context,
    depth_range,
    detect_analysis_intent,
    detect_user_level,
    dive_data_from_log,
    extract_dive_data,
    profile_depth,
    select_relevant_context,
    validate_dive_data,
)
from divecoach.services.usage import UsageRecorder

logger = get_logger(__name__)

STRUCTURED_ENDPOINT = "/api/openai/chat"
GENERAL_ENDPOINT = "/api/chat/general"
ANONYMOUS_USER = "anonymous"


@dataclass
class CoachingContext:
    """Everything derived from a request before the model is called."""

    user_id: str
    user_level: str
    depth_range: str
    analysis_intent: bool
    knowledge_chunks: list[str] = field(default_factory=list)
    dive_logs: list[DiveLog] = field(default_factory=list)
    dive_log_context: str = ""
    dive_data: Optional[DiveData] = None

    @property
    def cache_signature(self) -> Optional[DiveData]:
        if self.dive_data is not None:
            return self.dive_data
        if self.dive_logs:
            return dive_data_from_log(self.dive_logs[0])
        return None


class CoachingService:
    """
    Chat coaching over OpenAI with retrieval and the resilience layer.

    Args:
        executor: RetryExecutor wrapping every model call
        cache: ResponseCache for successful replies
        recorder: UsageRecorder for usage records
        llm: OpenAI client (None when no API key is configured)
        knowledge: Pinecone knowledge retrieval (optional)
        dive_logs: Supabase dive log source (optional)
        structured_timeout_seconds: Per-attempt timeout for structured_chat
        general_timeout_seconds: Per-attempt timeout for general_chat
        dive_log_limit: Dives loaded per analysis request
        clock: perf_counter-like clock for processing time
    """

    def __init__(
        self,
        executor: RetryExecutor,
        cache: ResponseCache,
        recorder: UsageRecorder,
        llm: Optional[OpenAIChatClient] = None,
        knowledge: Optional[KnowledgeBaseClient] = None,
        dive_logs: Optional[DiveLogRepository] = None,
        structured_timeout_seconds: float = 15.0,
        general_timeout_seconds: float = 25.0,
        dive_log_limit: int = 10,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._recorder = recorder
        self._llm = llm
        self._knowledge = knowledge
        self._dive_logs = dive_logs
        self._structured_timeout = structured_timeout_seconds
        self._general_timeout = general_timeout_seconds
        self._dive_log_limit = dive_log_limit
        self._clock = clock

    @property
    def model(self) -> str:
        return self._llm.model if self._llm is not None else "unconfigured"

    # =========================================================================
    # Request preparation
    # =========================================================================

    async def prepare(self, request: ChatRequest) -> CoachingContext:
        user_id = request.user_identifier or ANONYMOUS_USER
        intent = detect_analysis_intent(request.message, request.analysis_requested, request.history)

        knowledge_chunks: list[str] = []
        if self._knowledge is not None:
            knowledge_chunks = await self._knowledge.query(request.message)

        dive_logs: list[DiveLog] = []
        if intent:
            dive_logs = await self._load_dive_logs(user_id, request.dive_logs)

        context = CoachingContext(
            user_id=user_id,
            user_level=detect_user_level(request.profile),
            depth_range=depth_range(profile_depth(request.profile)),
            analysis_intent=intent,
            knowledge_chunks=knowledge_chunks,
            dive_logs=dive_logs,
            dive_log_context=build_dive_log_context(dive_logs, request.profile),
            dive_data=extract_dive_data(request.message),
        )
        logger.info(
            "chat request prepared",
            user_id=user_id,
            user_level=context.user_level,
            analysis_intent=intent,
            knowledge_chunks=len(knowledge_chunks),
            dive_logs=len(dive_logs),
        )
        return context

    async def _load_dive_logs(self, user_id: str, request_logs: list[DiveLog]) -> list[DiveLog]:
        if self._dive_logs is None or user_id == ANONYMOUS_USER:
            return list(request_logs)
        try:
            logs = await self._dive_logs.fetch_recent(user_id, limit=self._dive_log_limit)
        except CoachError as e:
            logger.warning("dive log fetch failed, using request dive logs", error=str(e))
            return list(request_logs)
        return logs or list(request_logs)

    def _metadata(self, request: ChatRequest, context: CoachingContext, started: float) -> ChatMetadata:
        return ChatMetadata(
            user_level=context.user_level,
            depth_range=context.depth_range,
            context_chunks=len(context.knowledge_chunks),
            dive_context=bool(context.dive_log_context),
            processing_time=self._elapsed_ms(started),
            embed_mode=request.embed_mode,
            analysis_intent=context.analysis_intent,
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, round((self._clock() - started) * 1000))

    # =========================================================================
    # Cache and usage helpers
    # =========================================================================

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self._cache.get(key)
        except CacheError as e:
            logger.warning("cache read failed", error=str(e))
            return None

    async def _cache_set(self, key: str, value: Any) -> None:
        try:
            await self._cache.set(key, value)
        except CacheError as e:
            logger.warning("cache write failed", error=str(e))

    async def _record_success(
        self,
        endpoint: str,
        context: CoachingContext,
        request: ChatRequest,
        result: CompletionResult,
        started: float,
    ) -> None:
        cost = self._recorder.calculate_cost(
            self.model, result.total_tokens, result.prompt_tokens, result.completion_tokens
        )
        await self._recorder.record_usage(
            UsageRecord(
                user_id=context.user_id,
                endpoint=endpoint,
                tokens_used=result.total_tokens,
                response_time_ms=self._elapsed_ms(started),
                model_used=self.model,
                cost_estimate=cost,
                success=True,
                metadata={
                    "userLevel": context.user_level,
                    "embedMode": request.embed_mode,
                    "hasDiveLogs": bool(context.dive_logs),
                    "contextChunks": len(context.knowledge_chunks),
                    "cacheHit": False,
                },
            )
        )

    async def _record_cache_hit(self, endpoint: str, context: CoachingContext, started: float) -> None:
        await self._recorder.record_usage(
            UsageRecord(
                user_id=context.user_id,
                endpoint=endpoint,
                response_time_ms=self._elapsed_ms(started),
                model_used=self.model,
                success=True,
                metadata={"userLevel": context.user_level, "cacheHit": True},
            )
        )

    async def _record_failure(
        self,
        endpoint: str,
        context: CoachingContext,
        error_type: str,
        started: float,
        error: Optional[BaseException] = None,
    ) -> None:
        await self._recorder.record_usage(
            UsageRecord(
                user_id=context.user_id,
                endpoint=endpoint,
                response_time_ms=self._elapsed_ms(started),
                model_used=self.model,
                success=False,
                error_type=error_type,
                metadata={"error": str(error) if error else error_type},
            )
        )

    # =========================================================================
    # Structured coaching report
    # =========================================================================

    async def structured_chat(self, request: ChatRequest) -> ChatResponse:
        """
        JSON coaching report for POST /api/openai/chat.

        The reply content is a JSON object with congratulations,
        safety_assessment, performance_analysis, coaching_feedback,
        next_steps and medical_disclaimer.
        """
        started = self._clock()
        context = await self.prepare(request)

        if context.dive_data is not None:
            errors = validate_dive_data(context.dive_data)
            if errors:
                logger.info("unrealistic dive data rejected", user_id=context.user_id, errors=errors)
                return self._reply(
                    json.dumps(prompts.dive_data_safety_alert(errors)),
                    self._metadata(request, context, started),
                )

        key = ResponseCache.build_key(
            "structured", context.user_level, request.message, context.cache_signature
        )
        cached = await self._cache_get(key)
        if cached is not None:
            await self._record_cache_hit(STRUCTURED_ENDPOINT, context, started)
            metadata = self._metadata(request, context, started)
            metadata.cached = True
            return self._reply(cached, metadata)

        if self._llm is None:
            return await self._structured_fallback(request, context, started, None)

        knowledge = "\n\n".join(
            select_relevant_context(
                context.knowledge_chunks,
                [context.dive_log_context],
                request.message,
                context.dive_data,
            )
        )
        messages = [
            {
                "role": "system",
                "content": prompts.structured_system_prompt(
                    context.user_level, request.embed_mode, bool(context.dive_logs)
                ),
            },
            {"role": "system", "content": prompts.structured_knowledge_message(knowledge)},
            {"role": "user", "content": request.message},
        ]

        llm = self._llm
        try:
            result = await self._executor.run(
                lambda: llm.complete(
                    messages,
                    temperature=0.1,
                    top_p=0.1,
                    frequency_penalty=0.1,
                    presence_penalty=0.1,
                    max_tokens=600 if request.embed_mode else 1000,
                    timeout_seconds=self._structured_timeout,
                    json_mode=True,
                ),
                RetryContext(endpoint_name=STRUCTURED_ENDPOINT, user_id=context.user_id),
            )
        except Exception as e:
            return await self._structured_fallback(request, context, started, e)

        content = json.dumps(self._parse_structured(result.content))
        await self._record_success(STRUCTURED_ENDPOINT, context, request, result, started)
        await self._cache_set(key, content)
        return self._reply(content, self._metadata(request, context, started))

    @staticmethod
    def _parse_structured(reply: str) -> dict[str, Any]:
        try:
            parsed = json.loads(reply)
        except json.JSONDecodeError:
            logger.warning("model reply was not JSON, wrapping")
            return prompts.wrap_unstructured_reply(reply)
        if not isinstance(parsed, dict) or any(
            not parsed.get(name) for name in prompts.REQUIRED_STRUCTURED_FIELDS
        ):
            logger.warning("model reply missing required fields, wrapping")
            return prompts.wrap_unstructured_reply(reply)
        parsed.setdefault("medical_disclaimer", prompts.MEDICAL_DISCLAIMER)
        if not parsed["medical_disclaimer"]:
            parsed["medical_disclaimer"] = prompts.MEDICAL_DISCLAIMER
        return parsed

    async def _structured_fallback(
        self,
        request: ChatRequest,
        context: CoachingContext,
        started: float,
        error: Optional[BaseException],
    ) -> ChatResponse:
        error_type = classify_error(error).type if error is not None else None
        type_name = error_type.value if error_type else "not_configured"
        await self._record_failure(STRUCTURED_ENDPOINT, context, type_name, started, error)
        record_fallback_response(STRUCTURED_ENDPOINT, type_name)

        metadata = self._metadata(request, context, started)
        metadata.fallback_used = True
        metadata.error_type = type_name
        return self._reply(json.dumps(prompts.structured_fallback(error_type)), metadata)

    # =========================================================================
    # Conversational coaching
    # =========================================================================

    async def general_chat(self, request: ChatRequest) -> ChatResponse:
        """Plain-text coaching reply for POST /api/chat/general."""
        started = self._clock()
        context = await self.prepare(request)

        key = ResponseCache.build_key(
            "general", context.user_level, request.message, context.cache_signature
        )
        cached = await self._cache_get(key)
        if cached is not None:
            await self._record_cache_hit(GENERAL_ENDPOINT, context, started)
            metadata = self._metadata(request, context, started)
            metadata.cached = True
            return self._reply(cached, metadata)

        if self._llm is None:
            return await self._general_fallback(request, context, started, None)

        knowledge = (
            "\n\n".join(context.knowledge_chunks[:3])
            if context.knowledge_chunks
            else prompts.NO_KNOWLEDGE_INSTRUCTION
        )
        if context.dive_log_context:
            knowledge = f"{knowledge}\n\n{context.dive_log_context}"

        messages = [
            {
                "role": "system",
                "content": prompts.general_system_prompt(
                    context.user_level, request.embed_mode, bool(context.dive_logs)
                ),
            },
            {"role": "system", "content": f"Knowledge Base:\n{knowledge}"},
            {"role": "user", "content": request.message},
        ]

        llm = self._llm
        try:
            result = await self._executor.run(
                lambda: llm.complete(
                    messages,
                    temperature=0.7,
                    max_tokens=600 if request.embed_mode else 800,
                    timeout_seconds=self._general_timeout,
                ),
                RetryContext(endpoint_name=GENERAL_ENDPOINT, user_id=context.user_id),
            )
        except Exception as e:
            return await self._general_fallback(request, context, started, e)

        await self._record_success(GENERAL_ENDPOINT, context, request, result, started)
        await self._cache_set(key, result.content)
        return self._reply(result.content, self._metadata(request, context, started))

    async def _general_fallback(
        self,
        request: ChatRequest,
        context: CoachingContext,
        started: float,
        error: Optional[BaseException],
    ) -> ChatResponse:
        error_type = classify_error(error).type if error is not None else None
        type_name = error_type.value if error_type else "not_configured"
        await self._record_failure(GENERAL_ENDPOINT, context, type_name, started, error)
        record_fallback_response(GENERAL_ENDPOINT, type_name)

        guidance = prompts.fallback_coaching_message(
            request.message,
            context.user_level,
            has_knowledge=bool(context.knowledge_chunks),
            has_dive_context=bool(context.dive_log_context),
        )
        metadata = self._metadata(request, context, started)
        metadata.fallback_used = True
        metadata.error_type = type_name
        return self._reply(f"{prompts.error_notice(error_type)}\n\n{guidance}", metadata)

    @staticmethod
    def _reply(content: str, metadata: ChatMetadata) -> ChatResponse:
        return ChatResponse(assistant_message=AssistantMessage(content=content), metadata=metadata)


__all__ = [
    "CoachingContext",
    "CoachingService",
    "GENERAL_ENDPOINT",
    "STRUCTURED_ENDPOINT",
]
