from copilot.db.models import (
    Base, User, PendingRecord, PendingKind,
    # Chat sessions
    ChatSession, ChatTurn, ChatExchange, ChatFile,
    SessionMode, CompletionMode, Freeform, AssistantBound,
)
from copilot.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "PendingRecord",
    "PendingKind",
    # Chat sessions
    "ChatSession",
    "ChatTurn",
    "ChatExchange",
    "ChatFile",
    "SessionMode",
    "CompletionMode",
    "Freeform",
    "AssistantBound",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
