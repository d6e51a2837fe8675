"""
Hub services.
"""
from .chat_service import ChatService, MessageResult, AdminJoinResult, PollResult
from .escalation_service import EscalationService, EscalationResult

__all__ = [
    'ChatService',
    'MessageResult',
    'AdminJoinResult',
    'PollResult',
    'EscalationService',
    'EscalationResult',
]
