"""
Chat Router

POST /api/openai/chat    structured JSON coaching report
POST /api/chat/general   conversational coaching reply

Both endpoints always answer with {assistantMessage, metadata}. Upstream
failures are handled inside CoachingService and come back as 200 fallback
replies; only a missing message (400) or a missing member identity (401)
produce an error status.
"""

import json
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from divecoach.api.deps import get_coaching_service, get_usage_recorder
from divecoach.models.domain import ErrorLogEntry, ErrorType, Severity
from divecoach.models.requests import ChatRequest
from divecoach.models.responses import AssistantMessage, ChatMetadata, ChatResponse
from divecoach.observability.logging import get_logger
from divecoach.resilience.classification import describe_error
from divecoach.services import prompts
from divecoach.services.coaching import (
    GENERAL_ENDPOINT,
    STRUCTURED_ENDPOINT,
    CoachingService,
)
from divecoach.services.usage import UsageRecorder

logger = get_logger(__name__)

router = APIRouter(tags=["Chat"])

INVALID_MESSAGE_REPLY = "Please provide a valid message."
IDENTIFICATION_REPLY = (
    "I need to know who I'm coaching. Please sign in or provide a nickname "
    "so I can personalise your freediving guidance."
)


def _error_reply(status_code: int, content: str) -> JSONResponse:
    response = ChatResponse(
        assistant_message=AssistantMessage(content=content),
        metadata=ChatMetadata(error=True),
    )
    return JSONResponse(status_code=status_code, content=response.to_payload())


def _validate(request: ChatRequest) -> Optional[JSONResponse]:
    if not request.message or not request.message.strip():
        return _error_reply(400, INVALID_MESSAGE_REPLY)
    if not request.user_identifier:
        return _error_reply(401, IDENTIFICATION_REPLY)
    return None


async def _answer(
    endpoint: str,
    request: ChatRequest,
    handler: Callable[[ChatRequest], Awaitable[ChatResponse]],
    recorder: UsageRecorder,
    fallback_content: str,
) -> JSONResponse:
    invalid = _validate(request)
    if invalid is not None:
        return invalid

    try:
        response = await handler(request)
    except Exception as e:
        logger.exception("chat handler failed", endpoint=endpoint, user_id=request.user_identifier)
        await recorder.log_error(
            ErrorLogEntry(
                user_id=request.user_identifier,
                endpoint=endpoint,
                error_type=ErrorType.UNKNOWN_ERROR.value,
                error_message=describe_error(e),
                context={"exception": type(e).__name__, "embedMode": request.embed_mode},
                severity=Severity.HIGH,
            )
        )
        response = ChatResponse(
            assistant_message=AssistantMessage(content=fallback_content),
            metadata=ChatMetadata(
                embed_mode=request.embed_mode,
                fallback_used=True,
                error_type=ErrorType.UNKNOWN_ERROR.value,
                error=True,
            ),
        )
    return JSONResponse(content=response.to_payload())


@router.post(STRUCTURED_ENDPOINT, response_model=None)
async def structured_chat(
    request: ChatRequest,
    coaching: CoachingService = Depends(get_coaching_service),
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> JSONResponse:
    """
    Structured coaching report.

    The reply content is a JSON document with safety_assessment,
    coaching_feedback and the medical disclaimer.
    """
    return await _answer(
        STRUCTURED_ENDPOINT,
        request,
        coaching.structured_chat,
        recorder,
        json.dumps(prompts.structured_fallback(ErrorType.UNKNOWN_ERROR)),
    )


@router.post(GENERAL_ENDPOINT, response_model=None)
async def general_chat(
    request: ChatRequest,
    coaching: CoachingService = Depends(get_coaching_service),
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> JSONResponse:
    """Conversational coaching reply."""
    return await _answer(
        GENERAL_ENDPOINT,
        request,
        coaching.general_chat,
        recorder,
        prompts.error_notice(ErrorType.UNKNOWN_ERROR),
    )
