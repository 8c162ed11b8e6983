"""
Knowledge Base Client

Retrieves coaching knowledge chunks from a Pinecone index by embedding the
member's message. Retrieval is best-effort: any failure yields no chunks and
the coach answers without them.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from pinecone import Pinecone

from divecoach.observability.logging import get_logger

logger = get_logger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


def _match_text(match: Any) -> Optional[str]:
    metadata = match.get("metadata") if isinstance(match, dict) else getattr(match, "metadata", None)
    if not metadata:
        return None
    return metadata.get("text") or metadata.get("content")


class KnowledgeBaseClient:
    """
    Pinecone-backed knowledge retrieval.

    Args:
        index: pinecone Index handle (sync SDK; queried in a worker thread)
        embedder: Coroutine turning text into a query vector
        top_k: Number of matches requested
    """

    def __init__(self, index: Any, embedder: Embedder, top_k: int = 3) -> None:
        self._index = index
        self._embedder = embedder
        self._top_k = top_k

    @classmethod
    def connect(
        cls, api_key: str, index_name: str, embedder: Embedder, top_k: int = 3
    ) -> "KnowledgeBaseClient":
        pc = Pinecone(api_key=api_key)
        logger.info("pinecone index connected", index=index_name)
        return cls(pc.Index(index_name), embedder, top_k=top_k)

    async def query(self, text: str) -> list[str]:
        """Knowledge chunks relevant to text (empty on blank input or failure)."""
        if not text or not text.strip():
            return []
        try:
            vector = await self._embedder(text)
            result = await asyncio.to_thread(
                self._index.query,
                vector=vector,
                top_k=self._top_k,
                include_metadata=True,
            )
        except Exception as e:
            logger.warning("knowledge retrieval failed", error=str(e))
            return []

        matches = result.get("matches", []) if isinstance(result, dict) else getattr(result, "matches", [])
        chunks = [chunk for chunk in (_match_text(m) for m in matches or []) if chunk]
        logger.debug("knowledge chunks retrieved", count=len(chunks))
        return chunks
