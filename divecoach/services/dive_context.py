"""
Dive Context Helpers

Pure functions the coaching flow uses to understand a request: experience
level, depth range, dive facts mentioned in the message, analysis intent,
the dive-log context block, and which knowledge chunks to send to the model.
"""

import math
import re
from typing import Any, Optional, Sequence

from divecoach.models.domain import DiveData, DiveLog
from divecoach.models.requests import HistoryMessage

VALID_DISCIPLINES = ("CWT", "CNF", "FIM", "STA", "DYN", "DYNB", "VWT", "NLT")

# Longer names first so "dynb" wins over "dyn"
_DISCIPLINE_PATTERNS = [
    (re.compile(r"\bconstant\s+weight\b"), "CWT"),
    (re.compile(r"\bfree\s+immersion\b"), "FIM"),
    (re.compile(r"\bstatic\b"), "STA"),
    (re.compile(r"\bdynb\b"), "DYNB"),
] + [
    (re.compile(rf"\b{code.lower()}\b"), code)
    for code in ("CWT", "CNF", "FIM", "STA", "DYN", "VWT", "NLT")
]

_DEPTH_RE = re.compile(r"\b(\d+)\s*(?:m|meters?|metres?)\b")
_TIME_RE = re.compile(r"\b(\d+):(\d{2})\b|\b(\d+)\s*(min|minutes?|sec|secs|seconds?)\b")

_ISSUE_MARKERS = [
    (("squeeze",), "squeeze"),
    (("equalization", "equalizing"), "equalization"),
    (("narcosis",), "narcosis"),
    (("blackout", "lmc"), "blackout_risk"),
    (("turn", "bottom"), "turn_technique"),
]

ANALYSIS_INTENT_RE = re.compile(
    r"\b(analyz\w*|audit|journal|dive\s*log|dive\s*journal|evaluate|evaluation|pattern|patterns)\b",
    re.IGNORECASE,
)
_BARE_YES_RE = re.compile(r"^yes[!.]*$", re.IGNORECASE)
AUDIT_OFFER_MARKER = "dive journal evaluation"

SAFETY_TERMS = ("safety", "danger", "risk", "protocol", "emergency", "squeeze", "blackout")
MAX_CONTEXT_CHUNKS = 8
RECENT_DIVES_IN_CONTEXT = 5


# =============================================================================
# Member profile
# =============================================================================


def detect_user_level(profile: Optional[dict[str, Any]]) -> str:
    """'expert' for instructors or a personal best deeper than 80 m."""
    profile = profile or {}
    try:
        pb = float(profile.get("pb") or 0)
    except (TypeError, ValueError):
        pb = 0.0
    return "expert" if profile.get("isInstructor") or pb > 80 else "beginner"


def depth_range(depth: Optional[float]) -> str:
    if not depth or depth <= 0:
        return "10m"
    if depth > 100:
        return "100m"
    return f"{math.floor(depth / 10) * 10}m"


def profile_depth(profile: Optional[dict[str, Any]]) -> Optional[float]:
    profile = profile or {}
    for key in ("currentDepth", "pb"):
        try:
            value = float(profile.get(key) or 0)
        except (TypeError, ValueError):
            continue
        if value > 0:
            return value
    return None


# =============================================================================
# Dive data extraction and validation
# =============================================================================


def parse_time_to_seconds(value: Optional[str]) -> int:
    """
    Parse "3:12", "1:02:03", "2 minutes" or "45 sec" into seconds.

    >>> parse_time_to_seconds("3:12")
    192
    """
    if not value:
        return 0
    text = value.strip().lower()
    if ":" in text:
        parts = [int(p) if p.isdigit() else 0 for p in text.split(":")]
        if len(parts) == 2:
            return parts[0] * 60 + parts[1]
        if len(parts) == 3:
            return parts[0] * 3600 + parts[1] * 60 + parts[2]
        return 0
    match = re.match(r"(\d+)\s*([a-z]*)", text)
    if not match:
        return 0
    amount, unit = int(match.group(1)), match.group(2)
    return amount * 60 if unit.startswith("min") else amount


def extract_dive_data(message: str) -> Optional[DiveData]:
    """
    Pull dive facts out of a free-text message.

    Returns None unless a discipline, a depth or a time was found.
    """
    msg = message.lower()
    data = DiveData()

    for pattern, code in _DISCIPLINE_PATTERNS:
        if pattern.search(msg):
            data.discipline = code
            break

    depths = [int(d) for d in _DEPTH_RE.findall(msg)]
    if depths:
        data.depth = max(depths)
        if "target" in msg or "planned" in msg:
            data.target_depth = depths[0]
        if "reached" in msg or "achieved" in msg or "hit" in msg:
            data.reached_depth = depths[-1]

    time_match = _TIME_RE.search(msg)
    if time_match:
        data.total_time = time_match.group(0)

    data.issues = [
        issue for markers, issue in _ISSUE_MARKERS
        if any(marker in msg for marker in markers)
    ]

    if data.discipline or data.depth is not None or data.total_time:
        return data
    return None


def validate_dive_data(data: DiveData) -> list[str]:
    """Return human-readable problems with the dive facts (empty if fine)."""
    errors = []
    for label, value in (
        ("Depth", data.depth),
        ("Target depth", data.target_depth),
        ("Reached depth", data.reached_depth),
    ):
        if value is not None and not 0 <= value <= 300:
            errors.append(f"{label} must be between 0-300m")

    if data.total_time:
        seconds = parse_time_to_seconds(data.total_time)
        if not 30 <= seconds <= 900:
            errors.append("Total dive time must be between 30 seconds and 15 minutes")

    if data.discipline and data.discipline not in VALID_DISCIPLINES:
        errors.append(f"Invalid discipline. Must be one of: {', '.join(VALID_DISCIPLINES)}")

    if (
        data.reached_depth is not None
        and data.target_depth is not None
        and data.reached_depth > data.target_depth + 10
    ):
        errors.append("Reached depth significantly exceeds target - safety concern")
    return errors


def dive_data_from_log(log: DiveLog) -> Optional[DiveData]:
    """Coarse dive facts of a logged dive, used for the cache signature."""
    deepest = log.deepest
    if deepest is None:
        return None
    return DiveData(discipline=log.discipline, depth=int(deepest))


# =============================================================================
# Analysis intent
# =============================================================================


def detect_analysis_intent(
    message: str,
    analysis_requested: bool = False,
    history: Sequence[HistoryMessage] = (),
) -> bool:
    """
    Does the member want their dive logs analysed?

    Keyword heuristic. A bare "yes" only counts as consent when the last
    assistant turn offered the dive journal evaluation.
    """
    if analysis_requested:
        return True
    text = (message or "").strip()
    if ANALYSIS_INTENT_RE.search(text):
        return True
    if _BARE_YES_RE.match(text):
        for turn in reversed(history):
            if turn.role == "assistant":
                return AUDIT_OFFER_MARKER in turn.content.lower()
    return False


# =============================================================================
# Dive log context
# =============================================================================


def _format_depth(value: Optional[float]) -> str:
    if value is None:
        return "?"
    return f"{value:g}"


def format_dive_log(log: DiveLog) -> str:
    details = [
        f"Date: {log.date or 'Unknown date'}",
        f"Discipline: {log.discipline or 'Unknown discipline'}",
        f"Location: {log.location or 'Unknown location'}",
        f"Target: {_format_depth(log.target_depth)}m -> Reached: {_format_depth(log.reached_depth)}m",
    ]
    if log.mouthfill_depth:
        details.append(f"Mouthfill: {_format_depth(log.mouthfill_depth)}m")
    if log.issue_depth:
        details.append(f"Issue at: {_format_depth(log.issue_depth)}m")
    if log.issue_comment:
        details.append(f"Issue: {log.issue_comment}")
    if log.notes:
        details.append(f"Notes: {log.notes}")
    return " | ".join(details)


def build_dive_log_context(logs: Sequence[DiveLog], profile: Optional[dict[str, Any]] = None) -> str:
    """Render the member's most recent dives for the model (empty if none)."""
    if not logs:
        return ""
    profile = profile or {}
    recent = logs[:RECENT_DIVES_IN_CONTEXT]
    last = logs[0].deepest
    progress = (
        "Multiple sessions recorded - analyze patterns and progression"
        if len(logs) >= 3
        else "Limited data - focus on current goals"
    )
    lines = "\n".join(format_dive_log(log) for log in recent)
    return (
        "=== MEMBER'S PERSONAL DIVE LOG DATA (YOU CAN ANALYZE THIS) ===\n"
        f"Recent Dive Sessions (Last {len(recent)} dives):\n"
        f"{lines}\n\n"
        "DIVE STATISTICS FOR ANALYSIS:\n"
        f"- Total recorded dives: {len(logs)}\n"
        f"- Personal best: {profile.get('pb') or 'Unknown'}m\n"
        f"- Last dive depth: {_format_depth(last) if last is not None else 'Unknown'}m\n"
        f"- Progress analysis: {progress}\n\n"
        "COACHING TASK: Analyze the above dive data and provide specific feedback "
        "on their progression, technique, and next training steps."
    )


# =============================================================================
# Context selection
# =============================================================================


def extract_keywords(message: str, dive_data: Optional[DiveData] = None) -> list[str]:
    keywords = [word for word in message.lower().split() if len(word) > 3]
    if dive_data is not None:
        if dive_data.discipline:
            keywords.append(dive_data.discipline.lower())
        if dive_data.depth is not None:
            keywords.append(f"{math.floor(dive_data.depth / 10) * 10}m")
        keywords.extend(dive_data.issues)
    return list(dict.fromkeys(keywords))


def score_chunk_relevance(chunk: str, keywords: Sequence[str]) -> float:
    lower = chunk.lower()
    score = float(sum(1 for keyword in keywords if keyword in lower))
    score += 2 * sum(1 for term in SAFETY_TERMS if term in lower)
    return score


def select_relevant_context(
    knowledge_chunks: Sequence[str],
    dive_log_chunks: Sequence[str],
    message: str,
    dive_data: Optional[DiveData] = None,
    max_chunks: int = MAX_CONTEXT_CHUNKS,
) -> list[str]:
    """
    Rank knowledge and dive-log chunks by keyword overlap and keep the best.

    Safety content scores +2 per safety term; dive-log chunks get +0.1 so
    they win ties. Ordering among equal scores is stable.
    """
    keywords = extract_keywords(message, dive_data)
    scored = [(score_chunk_relevance(c, keywords), c) for c in knowledge_chunks if c]
    scored += [(score_chunk_relevance(c, keywords) + 0.1, c) for c in dive_log_chunks if c]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [chunk for _, chunk in scored[:max_chunks]]
