"""
Coaching Prompts and Fallback Messages

System prompts for the two chat flavours and the user-facing messages sent
when the model cannot answer.
"""

import json
from typing import Optional

from divecoach.models.domain import ErrorType

COACH_NAME = "Koval Deep AI"
COACH_PERSON = "Daniel Koval"

MEDICAL_DISCLAIMER = (
    "SAFETY DISCLAIMER: This is coaching advice only. Always dive with proper "
    "supervision and consult medical professionals for health concerns. Never dive alone."
)

STRUCTURED_FIELDS = (
    "congratulations",
    "safety_assessment",
    "performance_analysis",
    "coaching_feedback",
    "next_steps",
    "medical_disclaimer",
)
REQUIRED_STRUCTURED_FIELDS = ("safety_assessment", "coaching_feedback")

AUDIT_OFFER = (
    "Do you want me to do a dive journal evaluation of patterns or issues that can be "
    "causing your problems for a more technical and in-depth evaluation? Just respond "
    "with 'yes' if you'd like me to proceed."
)

NO_KNOWLEDGE_INSTRUCTION = (
    f"CRITICAL: No specific knowledge found in {COACH_PERSON}'s training materials. "
    "You must inform the user that you don't have specific guidance on this topic from "
    f"{COACH_PERSON}'s materials and cannot provide generic freediving advice."
)


def _audience(embed_mode: bool) -> str:
    if embed_mode:
        return (
            "You are speaking with an authenticated member through an embedded widget "
            "on their private member page. "
        )
    return "You are speaking with an authenticated member on their training dashboard. "


def _dive_log_access(has_dive_logs: bool) -> str:
    if not has_dive_logs:
        return ""
    return (
        "IMPORTANT: You have FULL ACCESS to their personal dive log data and training "
        "history. This data is provided in the knowledge base below. Analyze their "
        "specific dives, progression patterns, and performance to give personalized "
        "coaching feedback. "
    )


def structured_system_prompt(level: str, embed_mode: bool, has_dive_logs: bool) -> str:
    """System prompt for the JSON coaching reply."""
    schema = {field: "..." for field in STRUCTURED_FIELDS}
    schema["medical_disclaimer"] = MEDICAL_DISCLAIMER
    dive_log_section = ""
    if has_dive_logs:
        dive_log_section = (
            "\nDIVE LOG ANALYSIS:\n"
            "- Analyze specific dive patterns and progression\n"
            "- Identify safety concerns from historical data\n"
            "- Reference specific dates, depths, and performance metrics\n"
        )
    return (
        f"You are {COACH_NAME}, {COACH_PERSON}'s freediving coaching system. "
        f"{_audience(embed_mode)}{_dive_log_access(has_dive_logs)}\n\n"
        "RESPONSE FORMAT - CRITICAL:\n"
        "You MUST respond in valid JSON with exactly these keys:\n"
        f"{json.dumps(schema, indent=2)}\n\n"
        "KNOWLEDGE BASE USAGE:\n"
        f"- Quote {COACH_PERSON}'s content EXACTLY as written; never paraphrase safety rules\n"
        "- Use the E.N.C.L.O.S.E. framework (Equalization, Narcosis, Contractions, "
        "LMC, Oxygen, Squeeze, Emergency) for the safety assessment\n\n"
        "COACHING METHODOLOGY:\n"
        f"- Provide {level}-level technical detail appropriate for experience\n"
        "- Target descent speed 1m/sec with controlled ascent\n"
        "- Safe progression: 2-3m increments only when symptoms disappear\n\n"
        "CRITICAL SAFETY REQUIREMENTS:\n"
        "- Never recommend progression with active symptoms\n"
        "- Treat depths outside 0-300m and times outside 30s-15min as unrealistic\n"
        "- Flag dangerous patterns immediately\n"
        "- Include the medical disclaimer in every response\n"
        f"{dive_log_section}"
    )


def general_system_prompt(level: str, embed_mode: bool, has_dive_logs: bool) -> str:
    """System prompt for the plain-text coaching reply."""
    word_limit = 600 if embed_mode else 800
    if has_dive_logs:
        content_rule = (
            "YOU CAN AND MUST ANALYZE their personal dive logs provided in the Knowledge "
            "Base section. Reference specific dives, depths, dates, and progression patterns."
        )
    else:
        content_rule = "ONLY use information from the provided knowledge base below."
    return (
        f"You are {COACH_NAME}, {COACH_PERSON}'s freediving coaching system. "
        f"{_audience(embed_mode)}{_dive_log_access(has_dive_logs)}"
        "Provide personalized coaching based on their progress and training history.\n\n"
        "RESPONSE FORMAT:\n"
        "- Structure responses with clear emoji section headers and bullet points\n"
        "- Keep formatting clean and scannable\n\n"
        "CONTENT REQUIREMENTS:\n"
        f"- {content_rule}\n"
        f"- NEVER provide generic freediving advice; only use {COACH_PERSON}'s methodology\n"
        "- If the knowledge base contains \"Bot Must Say\" instructions, include that text verbatim\n"
        f"- Provide {level}-level technical detail appropriate for the user's experience\n"
        "- Always prioritize safety and progressive training\n"
        f"- Keep responses under {word_limit} words\n\n"
        "DIVE LOG AUDIT FEATURE:\n"
        f"- When genuinely helpful and the member has dive logs, offer: \"{AUDIT_OFFER}\"\n"
        "- Wait for the member to explicitly respond \"yes\" before starting the audit\n"
    )


def structured_knowledge_message(context: str) -> str:
    if not context:
        return "Knowledge Base:\nNo specific knowledge chunks found. Provide general guidance but note limitations."
    return (
        f"Knowledge Base:\n{COACH_PERSON.upper()}'S FREEDIVING KNOWLEDGE BASE:\n\n{context}\n\n"
        "USAGE INSTRUCTIONS: Quote specific rules exactly as written. "
        "Include \"Bot Must Say\" messages verbatim."
    )


# =============================================================================
# Structured replies without a model call
# =============================================================================


def structured_reply(safety_assessment: str, coaching_feedback: str, **extra: str) -> dict:
    reply = {
        "safety_assessment": safety_assessment,
        "coaching_feedback": coaching_feedback,
        **extra,
    }
    reply["medical_disclaimer"] = MEDICAL_DISCLAIMER
    return reply


def dive_data_safety_alert(errors: list[str]) -> dict:
    return structured_reply(
        f"SAFETY ALERT: {', '.join(errors)}",
        "Please provide realistic dive data for accurate coaching analysis.",
    )


def wrap_unstructured_reply(reply: str) -> dict:
    """Fit a plain-text model reply into the structured shape."""
    return structured_reply(
        "Please ensure proper safety protocols are followed.",
        reply,
        congratulations="Thank you for your question!",
        performance_analysis=reply[:200] + ("..." if len(reply) > 200 else ""),
        next_steps=f"Continue following {COACH_PERSON}'s methodology and safety protocols.",
    )


# =============================================================================
# Failure messages
# =============================================================================

_ERROR_NOTICES = {
    ErrorType.QUOTA_EXCEEDED: (
        "I'm currently experiencing high demand. Please try again in a few minutes, "
        "or contact support if this persists."
    ),
    ErrorType.RATE_LIMIT: "Too many requests at once. Please wait a moment and try again.",
    ErrorType.AUTH_FAILURE: "Authentication issue with the AI service. Please contact support.",
    ErrorType.TIMEOUT: (
        "The AI is taking longer than usual to respond. Please try asking a shorter "
        "question or try again."
    ),
    ErrorType.CIRCUIT_OPEN: (
        "The AI coaching service is recovering from a temporary outage. "
        "Please try again in a few minutes."
    ),
}
_DEFAULT_NOTICE = (
    "I'm having technical difficulties connecting to the AI service. Please try again "
    "in a moment, and if the issue persists, contact support."
)
NOT_CONFIGURED_NOTICE = "The AI coaching system is not configured right now."

_STRUCTURED_FALLBACKS = {
    ErrorType.QUOTA_EXCEEDED: (
        "AI coaching system temporarily unavailable due to high demand.",
        "Please try again in a few minutes, or contact support if this persists.",
    ),
    ErrorType.RATE_LIMIT: (
        "Too many requests at once.",
        "Please wait a moment and try again.",
    ),
    ErrorType.AUTH_FAILURE: (
        "Authentication issue with the AI service.",
        "Please contact support.",
    ),
    ErrorType.TIMEOUT: (
        "The AI is taking longer than usual to respond.",
        "Please try asking a shorter question or try again.",
    ),
    ErrorType.CIRCUIT_OPEN: (
        "AI coaching system is recovering from a temporary outage.",
        "Please try again in a few minutes.",
    ),
}
_DEFAULT_STRUCTURED = (
    "Technical difficulties with AI service.",
    "Please try again in a moment, and if the issue persists, contact support.",
)


def error_notice(error_type: Optional[ErrorType]) -> str:
    """Short categorised explanation of why the coach could not answer."""
    if error_type is None:
        return NOT_CONFIGURED_NOTICE
    return _ERROR_NOTICES.get(error_type, _DEFAULT_NOTICE)


def structured_fallback(error_type: Optional[ErrorType]) -> dict:
    safety, feedback = _STRUCTURED_FALLBACKS.get(error_type, _DEFAULT_STRUCTURED)
    return structured_reply(safety, feedback)


def fallback_coaching_message(
    message: str,
    user_level: str,
    has_knowledge: bool,
    has_dive_context: bool,
) -> str:
    """Topic-aware guidance sent when the model is unavailable."""
    lower = message.lower()
    level = "advanced" if user_level == "expert" else "beginner"

    if "depth" in lower or "deep" in lower:
        return (
            "Safety First: Never attempt depths beyond your current certification and "
            "comfort level. Always dive with a qualified buddy and follow proper safety "
            "protocols.\n\n"
            f"For {level} freedivers like yourself, progressive training is key. Start "
            "shallow and increase depth only when you've mastered the fundamentals.\n\n"
            f"Please refer to {COACH_PERSON}'s training materials in your member area, "
            "and consider booking a 1-on-1 session for personalized depth progression guidance."
        )

    if "breath" in lower or "hold" in lower:
        return (
            "Breath Hold Safety: Always practice breath holds in a safe environment with "
            "proper supervision. Never practice breath holds in water without a certified "
            "safety diver.\n\n"
            "Focus on relaxation techniques. Progressive training with proper rest "
            "intervals is more effective than pushing limits.\n\n"
            f"For {level} level training, refer to {COACH_PERSON}'s breathwork protocols "
            "in your training materials."
        )

    if "technique" in lower or "form" in lower:
        return (
            "Proper Form: Streamlined body position, relaxed muscles, and efficient "
            "movement patterns are essential for freediving.\n\n"
            f"Your member training materials contain {COACH_PERSON}'s technique "
            "breakdowns for your level. Focus on one technique element at a time."
        )

    parts = [f"While I reconnect, here are some general guidelines for {user_level} level freedivers."]
    if has_knowledge:
        parts.append(
            f"I found relevant information in {COACH_PERSON}'s training materials that "
            "should help with your question."
        )
    if has_dive_context:
        parts.append(
            "I can see your recent dive history and will provide personalized coaching "
            "once my system reconnects."
        )
    parts.append(
        "Please try asking your question again in about 30 seconds. In the meantime, "
        "you can browse your training materials or book a 1-on-1 session.\n\n"
        "Safety Reminder: Always follow proper safety protocols and never exceed your "
        "current training level."
    )
    return " ".join(parts)
