"""
Push channel envelopes.

Every frame on the push channel is ``{"type": ..., "data": {...}}``.
Inbound frames form a closed tagged union parsed with a discriminated
TypeAdapter; outbound frames are ServerEvent instances.
"""
import json
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from .chat import ChatMessage, ChatSession, check_session_id, normalize_email


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator('session_id', check_fields=False)
    @classmethod
    def validate_session_id(cls, v: Optional[str]) -> Optional[str]:
        return check_session_id(v) if v is not None else v

    @field_validator('user_email', mode='before', check_fields=False)
    @classmethod
    def validate_user_email(cls, v: Any) -> Optional[str]:
        return normalize_email(v)


class JoinUserSessionData(_Payload):
    session_id: str = Field(..., min_length=1, max_length=255)
    user_email: Optional[str] = None


class JoinAdminSessionData(_Payload):
    admin_id: str = Field(..., min_length=1, max_length=255)
    session_id: Optional[str] = Field(None, min_length=1, max_length=255)


class UserMessageData(_Payload):
    session_id: str = Field(..., min_length=1, max_length=255)
    text: str
    user_email: Optional[str] = None

    @field_validator('text', mode='before')
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class AdminMessageData(_Payload):
    session_id: str = Field(..., min_length=1, max_length=255)
    admin_id: str = Field(..., min_length=1, max_length=255)
    text: str

    @field_validator('text', mode='before')
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


# ===========================
# Client -> hub
# ===========================

class JoinUserSession(BaseModel):
    type: Literal["join_user_session"]
    data: JoinUserSessionData


class JoinAdminSession(BaseModel):
    type: Literal["join_admin_session"]
    data: JoinAdminSessionData


class UserMessage(BaseModel):
    type: Literal["user_message"]
    data: UserMessageData


class AdminMessage(BaseModel):
    type: Literal["admin_message"]
    data: AdminMessageData


ClientEnvelope = Annotated[
    Union[JoinUserSession, JoinAdminSession, UserMessage, AdminMessage],
    Field(discriminator="type"),
]

CLIENT_ENVELOPE_TYPES = (JoinUserSession, JoinAdminSession, UserMessage, AdminMessage)

_client_envelope_adapter: TypeAdapter = TypeAdapter(ClientEnvelope)


def parse_client_envelope(raw: Union[str, bytes, Dict[str, Any]]):
    """
    Parse one inbound frame.

    Raises:
        pydantic.ValidationError: On unknown type or malformed payload
    """
    if isinstance(raw, (str, bytes)):
        return _client_envelope_adapter.validate_json(raw)
    return _client_envelope_adapter.validate_python(raw)


# ===========================
# Hub -> client
# ===========================

class ServerEventType(str, Enum):
    CONNECTED = "connected"
    SESSION_DATA = "session_data"
    ACTIVE_SESSIONS = "active_sessions"
    NEW_USER_MESSAGE = "new_user_message"
    ADMIN_MESSAGE = "admin_message"
    MESSAGE_SENT = "message_sent"
    ESCALATION_REQUEST = "escalation_request"
    ERROR = "error"


class ServerEvent(BaseModel):
    """Outbound frame."""

    type: ServerEventType
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_wire())

    @classmethod
    def from_wire(cls, raw: Union[str, bytes, Dict[str, Any]]) -> 'ServerEvent':
        if isinstance(raw, (str, bytes)):
            return cls.model_validate_json(raw)
        return cls.model_validate(raw)

    # Constructors

    @classmethod
    def connected(cls, message: str = "Connected to support chat") -> 'ServerEvent':
        return cls(type=ServerEventType.CONNECTED, data={"message": message})

    @classmethod
    def session_data(cls, session: ChatSession) -> 'ServerEvent':
        return cls(type=ServerEventType.SESSION_DATA, data=session.to_document())

    @classmethod
    def active_sessions(cls, summaries: List[Dict[str, Any]]) -> 'ServerEvent':
        return cls(type=ServerEventType.ACTIVE_SESSIONS, data={"sessions": summaries})

    @classmethod
    def new_user_message(cls, message: ChatMessage) -> 'ServerEvent':
        return cls(type=ServerEventType.NEW_USER_MESSAGE, data=_message_data(message))

    @classmethod
    def admin_message(cls, message: ChatMessage) -> 'ServerEvent':
        return cls(type=ServerEventType.ADMIN_MESSAGE, data=_message_data(message))

    @classmethod
    def message_sent(cls, message: ChatMessage) -> 'ServerEvent':
        return cls(type=ServerEventType.MESSAGE_SENT, data=_message_data(message))

    @classmethod
    def escalation_request(cls, session: ChatSession) -> 'ServerEvent':
        notice = session.latest_notice()
        data = session.summary()
        data["notice"] = notice.text if notice else None
        return cls(type=ServerEventType.ESCALATION_REQUEST, data=data)

    @classmethod
    def error(cls, message: str, code: str = "error") -> 'ServerEvent':
        return cls(type=ServerEventType.ERROR, data={"message": message, "code": code})


def _message_data(message: ChatMessage) -> Dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True)


__all__ = [
    'JoinUserSession',
    'JoinAdminSession',
    'UserMessage',
    'AdminMessage',
    'JoinUserSessionData',
    'JoinAdminSessionData',
    'UserMessageData',
    'AdminMessageData',
    'ClientEnvelope',
    'CLIENT_ENVELOPE_TYPES',
    'parse_client_envelope',
    'ServerEventType',
    'ServerEvent',
]
