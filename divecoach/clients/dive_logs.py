"""
Dive Log Repository

Reads a member's logged dives. The production implementation queries the
Supabase `dive_logs` table; the coaching flow falls back to the dive logs
sent with the request when this source is missing or fails.
"""

import asyncio
import hashlib
import uuid
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError
from supabase import Client, create_client

from divecoach.core.exceptions import UpstreamError
from divecoach.models.domain import DiveLog
from divecoach.observability.logging import get_logger

logger = get_logger(__name__)

DIVE_LOGS_TABLE = "dive_logs"


def normalize_user_id(user_id: str) -> str:
    """
    Map an arbitrary member identifier onto the UUID stored in dive_logs.

    Real UUIDs pass through; anything else becomes a deterministic UUID
    derived from its md5 digest.
    """
    try:
        return str(uuid.UUID(user_id))
    except ValueError:
        return str(uuid.UUID(hex=hashlib.md5(user_id.encode()).hexdigest()))


class DiveLogRepository(ABC):
    @abstractmethod
    async def fetch_recent(self, user_id: str, limit: int = 10) -> list[DiveLog]:
        """Most recent dives first."""


class SupabaseDiveLogRepository(DiveLogRepository):
    """
    dive_logs reader over the (synchronous) supabase client.

    Raises UpstreamError when the query fails.
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def connect(cls, url: str, key: str) -> "SupabaseDiveLogRepository":
        return cls(create_client(url, key))

    def _query(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        result = (
            self._client.table(DIVE_LOGS_TABLE)
            .select("*")
            .eq("user_id", normalize_user_id(user_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def fetch_recent(self, user_id: str, limit: int = 10) -> list[DiveLog]:
        try:
            rows = await asyncio.to_thread(self._query, user_id, limit)
        except Exception as e:
            raise UpstreamError(f"Failed to load dive logs: {e}", service="supabase") from e
        try:
            logs = [DiveLog.model_validate(row) for row in rows]
        except ValidationError as e:
            raise UpstreamError(f"Malformed dive log row: {e}", service="supabase") from e
        logger.debug("dive logs loaded", user_id=user_id, count=len(logs))
        return logs
