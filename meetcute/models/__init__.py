"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .memory import Memory, MEMORY_WAITING, MEMORY_MATCHED
from .match import Match, MATCH_PENDING, MATCH_ACCEPTED, MATCH_DECLINED
from .conversation import Conversation, ConversationParticipant, Message
from .draft import MemoryDraft

__all__ = [
    "RecordBase",
    "Memory", "MEMORY_WAITING", "MEMORY_MATCHED",
    "Match", "MATCH_PENDING", "MATCH_ACCEPTED", "MATCH_DECLINED",
    "Conversation", "ConversationParticipant", "Message",
    "MemoryDraft",
]
