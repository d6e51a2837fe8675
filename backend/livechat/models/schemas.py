"""
Pydantic schemas for HTTP request/response validation.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any
from datetime import datetime

from .chat import ChatMessage, HistoryEntry, SessionStatus, check_session_id, normalize_email


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator('session_id', check_fields=False)
    @classmethod
    def validate_session_id(cls, v: str) -> str:
        return check_session_id(v)

    @field_validator('user_email', mode='before', check_fields=False)
    @classmethod
    def validate_user_email(cls, v: Any) -> Optional[str]:
        return normalize_email(v)


def _strip_message(v: Any) -> Any:
    """Ensure message is not just whitespace."""
    if isinstance(v, str):
        v = v.strip()
        if not v:
            raise ValueError('Message cannot be empty')
    return v


# Request Schemas

class EscalateRequest(_CamelModel):
    """Request to hand a bot conversation to a human admin."""
    session_id: str = Field(..., min_length=1, max_length=255)
    user_email: Optional[str] = Field(None, max_length=320)
    user_id: Optional[str] = Field(None, max_length=255)
    messages: List[HistoryEntry] = Field(default_factory=list)
    admin_online_hint: Optional[bool] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sessionId": "chat_1718000000_ab12",
                "userEmail": "user@example.com",
                "messages": [
                    {"sender": "user", "text": "I need help with my ticket"},
                    {"sender": "bot", "text": "Let me find someone for you."}
                ]
            }
        }
    )


class SendToAdminRequest(_CamelModel):
    """User message sent over the HTTP fallback path."""
    session_id: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    user_email: Optional[str] = Field(None, max_length=320)

    @field_validator('message', mode='before')
    @classmethod
    def validate_message(cls, v):
        return _strip_message(v)


class HeartbeatRequest(_CamelModel):
    """Admin UI liveness beat."""
    admin_id: str = Field(..., min_length=1, max_length=255)


class AdminRespondRequest(_CamelModel):
    """Admin reply sent over HTTP."""
    admin_id: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)

    @field_validator('message', mode='before')
    @classmethod
    def validate_message(cls, v):
        return _strip_message(v)


class CloseSessionRequest(_CamelModel):
    """Admin closing a session."""
    admin_id: str = Field(..., min_length=1, max_length=255)


# Response Schemas

class EscalateResponse(_CamelModel):
    status: SessionStatus
    escalation_message: Optional[str] = None
    admin_online: bool
    escalated: bool
    notified_admins: int = 0


class SendAcceptedResponse(_CamelModel):
    accepted: bool = True
    message: ChatMessage


class PollResponse(_CamelModel):
    has_new_messages: bool
    messages: List[ChatMessage]
    session_status: SessionStatus


class AdminStatusResponse(_CamelModel):
    is_online: bool
    online_admins: List[str]


class SessionSummary(_CamelModel):
    id: str
    user_email: Optional[str] = None
    status: SessionStatus
    assigned_admin_id: Optional[str] = None
    message_count: int
    last_activity: str
    unread_count: int = 0
    awaiting_since: Optional[str] = None


class AdminActionResponse(_CamelModel):
    success: bool = True
    session: Dict[str, Any]
    message: Optional[ChatMessage] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, Any] = {}


__all__ = [
    'EscalateRequest',
    'SendToAdminRequest',
    'HeartbeatRequest',
    'AdminRespondRequest',
    'CloseSessionRequest',
    'EscalateResponse',
    'SendAcceptedResponse',
    'PollResponse',
    'AdminStatusResponse',
    'SessionSummary',
    'AdminActionResponse',
    'HealthResponse',
]
