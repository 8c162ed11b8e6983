"""
Clients for external services: OpenAI, Pinecone, Supabase.
"""

from divecoach.clients.dive_logs import DiveLogRepository, SupabaseDiveLogRepository
from divecoach.clients.knowledge import KnowledgeBaseClient
from divecoach.clients.openai_chat import CompletionResult, OpenAIChatClient

__all__ = [
    "CompletionResult",
    "DiveLogRepository",
    "KnowledgeBaseClient",
    "OpenAIChatClient",
    "SupabaseDiveLogRepository",
]
