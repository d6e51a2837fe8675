"""
Domain models, push envelopes and HTTP schemas.
"""
from .chat import (
    SessionStatus,
    Sender,
    MessageKind,
    ChatMessage,
    HistoryEntry,
    AdminPresence,
    ChatSession,
    utc_now,
)
from .events import ServerEvent, ServerEventType, parse_client_envelope

__all__ = [
    'SessionStatus',
    'Sender',
    'MessageKind',
    'ChatMessage',
    'HistoryEntry',
    'AdminPresence',
    'ChatSession',
    'utc_now',
    'ServerEvent',
    'ServerEventType',
    'parse_client_envelope',
]
