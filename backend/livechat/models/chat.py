"""
Chat session domain model.

A ChatSession is an immutable document: the session header plus its
append-only message log. State changes go through the transition methods,
each of which returns a new ChatSession and leaves the receiver untouched.
Stores persist whatever the transitions return.

Version: 1.0.0
"""
import re
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..exceptions import ContactRequired, InvalidTransition, SessionResolved, StaleAssignment

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)

SESSION_ID_PATTERN = re.compile(r'^[A-Za-z0-9_:.-]{1,255}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MESSAGE_ID_PATTERN = re.compile(r'^msg_(\d{16})_(\d{6})$')

# Hard ceiling; the configurable limit is enforced by the hub.
MAX_TEXT_LENGTH = 100_000


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def check_session_id(value: str) -> str:
    """Session ids come from clients; restrict them to a safe charset."""
    if not SESSION_ID_PATTERN.match(value):
        raise ValueError(f"Invalid session id: {value!r}")
    return value


def normalize_email(value: Any) -> Optional[str]:
    """Strip and lowercase an email; blank becomes None."""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if not EMAIL_PATTERN.match(value):
        raise ValueError(f"Invalid email address: {value!r}")
    return value.lower()


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def make_message_id(timestamp: datetime, sequence: int) -> str:
    """Build ``msg_<16-digit epoch microseconds>_<6-digit sequence>``."""
    micros = (ensure_utc(timestamp) - _EPOCH) // _ONE_MICROSECOND
    return f"msg_{micros:016d}_{sequence:06d}"


def parse_message_id(message_id: str) -> Optional[Tuple[int, int]]:
    """Return ``(epoch_micros, sequence)`` or None for a foreign id."""
    match = MESSAGE_ID_PATTERN.match(message_id)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class SessionStatus(str, Enum):
    """Lifecycle of a support chat session."""
    BOT_HANDLED = "bot_handled"
    PENDING_ADMIN = "pending_admin"
    ACTIVE = "active"
    RESOLVED = "resolved"


class Sender(str, Enum):
    """Origin of a chat message."""
    BOT = "bot"
    USER = "user"
    ADMIN = "admin"


class MessageKind(str, Enum):
    """Message presentation kind."""
    TEXT = "text"
    ESCALATION_NOTICE = "escalation_notice"
    QUICK_REPLY = "quick_reply"


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ChatMessage(_WireModel):
    """One immutable entry in a session's message log."""

    id: str = Field(..., min_length=1, max_length=64)
    session_id: str
    sender: Sender
    text: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    timestamp: datetime
    kind: MessageKind = MessageKind.TEXT

    @field_validator('text', mode='before')
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class HistoryEntry(_WireModel):
    """A pre-escalation bot transcript line supplied by the client."""

    sender: Sender
    text: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    timestamp: Optional[datetime] = None
    kind: MessageKind = MessageKind.TEXT

    @field_validator('text', mode='before')
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v


class AdminPresence(_WireModel):
    """Last heartbeat seen from an admin UI."""

    admin_id: str = Field(..., min_length=1, max_length=255)
    last_heartbeat_at: datetime

    @field_validator('last_heartbeat_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ChatSession(_WireModel):
    """
    A support conversation between one end user and at most one admin.

    Invariants:
    - ``assigned_admin_id`` is set exactly when status is active or resolved
    - message ids strictly increase and timestamps never decrease
    - resolved is terminal
    """

    id: str = Field(..., min_length=1, max_length=255)
    user_id: Optional[str] = Field(None, max_length=255)
    user_email: Optional[str] = Field(None, max_length=320)
    status: SessionStatus = SessionStatus.BOT_HANDLED
    assigned_admin_id: Optional[str] = Field(None, max_length=255)
    messages: Tuple[ChatMessage, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    # Pickup marker for admins who were offline when the user wrote
    unread_count: int = Field(0, ge=0)
    awaiting_admin_since: Optional[datetime] = None

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        return check_session_id(v)

    @field_validator('user_email', mode='before')
    @classmethod
    def validate_email(cls, v: Any) -> Any:
        return normalize_email(v)

    @field_validator('created_at', 'last_activity_at')
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator('awaiting_admin_since')
    @classmethod
    def normalize_awaiting(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode='after')
    def check_invariants(self) -> 'ChatSession':
        assigned = self.assigned_admin_id is not None
        owned = self.status in (SessionStatus.ACTIVE, SessionStatus.RESOLVED)
        if assigned != owned:
            raise ValueError(
                f"assigned_admin_id must be set iff status is active/resolved "
                f"(status={self.status.value}, admin={self.assigned_admin_id})"
            )

        previous: Optional[ChatMessage] = None
        for message in self.messages:
            if message.session_id != self.id:
                raise ValueError(f"Message {message.id} belongs to {message.session_id}")
            if previous is not None:
                if message.id <= previous.id:
                    raise ValueError(f"Message ids out of order: {previous.id} >= {message.id}")
                if message.timestamp < previous.timestamp:
                    raise ValueError(f"Message timestamps out of order at {message.id}")
            previous = message
        return self

    # ===========================
    # Read helpers
    # ===========================

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def last_message_id(self) -> Optional[str]:
        return self.messages[-1].id if self.messages else None

    @property
    def is_resolved(self) -> bool:
        return self.status == SessionStatus.RESOLVED

    @property
    def is_escalated(self) -> bool:
        return self.status != SessionStatus.BOT_HANDLED

    def messages_after(
        self,
        last_message_id: Optional[str] = None,
        since: Optional[datetime] = None,
        sender: Optional[Sender] = None
    ) -> List[ChatMessage]:
        """
        Messages newer than a cursor.

        Args:
            last_message_id: Only messages with a greater id
            since: Only messages at or after this timestamp; timestamps can
                tie, so the caller dedups by id
            sender: Only messages from this sender

        Returns:
            Matching messages in append order
        """
        if since is not None:
            since = ensure_utc(since)

        result = []
        for message in self.messages:
            if last_message_id is not None and message.id <= last_message_id:
                continue
            if since is not None and message.timestamp < since:
                continue
            if sender is not None and message.sender != sender:
                continue
            result.append(message)
        return result

    def latest_notice(self) -> Optional[ChatMessage]:
        """Most recent escalation notice, if any."""
        for message in reversed(self.messages):
            if message.kind == MessageKind.ESCALATION_NOTICE:
                return message
        return None

    def summary(self) -> Dict[str, Any]:
        """Compact listing entry for admin dashboards."""
        return {
            "id": self.id,
            "userEmail": self.user_email,
            "status": self.status.value,
            "assignedAdminId": self.assigned_admin_id,
            "messageCount": self.message_count,
            "lastActivity": self.last_activity_at.isoformat(),
            "unreadCount": self.unread_count,
            "awaitingSince": (
                self.awaiting_admin_since.isoformat() if self.awaiting_admin_since else None
            ),
        }

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible wire/storage representation."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Union[str, bytes, Dict[str, Any]]) -> 'ChatSession':
        """Inverse of ``to_document``; also accepts a JSON string."""
        if isinstance(data, (str, bytes)):
            return cls.model_validate_json(data)
        return cls.model_validate(data)

    # ===========================
    # Transitions
    # ===========================

    def _evolve(self, **changes: Any) -> 'ChatSession':
        values = dict(self)
        values.update(changes)
        return type(self)(**values)

    def _next_message(
        self,
        sender: Sender,
        text: str,
        kind: MessageKind,
        now: Optional[datetime],
        messages: Tuple[ChatMessage, ...]
    ) -> ChatMessage:
        timestamp = ensure_utc(now) if now is not None else utc_now()
        message_id = make_message_id(timestamp, 0)

        if messages:
            last = messages[-1]
            if timestamp < last.timestamp:
                timestamp = last.timestamp
                message_id = make_message_id(timestamp, 0)

            if message_id <= last.id:
                parsed = parse_message_id(last.id)
                if parsed is None:
                    raise InvalidTransition(
                        f"Cannot order new message after foreign id {last.id}",
                        session_id=self.id
                    )
                # Same microsecond as the previous message
                micros, sequence = parsed
                message_id = f"msg_{micros:016d}_{sequence + 1:06d}"

        return ChatMessage(
            id=message_id,
            session_id=self.id,
            sender=sender,
            text=text,
            timestamp=timestamp,
            kind=kind,
        )

    def _with_messages(self, new_messages: Iterable[ChatMessage], **changes: Any) -> 'ChatSession':
        messages = self.messages + tuple(new_messages)
        last_activity = messages[-1].timestamp if messages else self.last_activity_at
        if last_activity < self.last_activity_at:
            last_activity = self.last_activity_at
        return self._evolve(messages=messages, last_activity_at=last_activity, **changes)

    def with_contact(
        self,
        user_email: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> 'ChatSession':
        """Fill in missing contact details; never overwrites existing ones."""
        changes: Dict[str, Any] = {}
        if user_email and not self.user_email:
            changes["user_email"] = user_email
        if user_id and not self.user_id:
            changes["user_id"] = user_id
        if not changes:
            return self
        return self._evolve(**changes)

    def append(
        self,
        sender: Sender,
        text: str,
        kind: MessageKind = MessageKind.TEXT,
        now: Optional[datetime] = None
    ) -> 'ChatSession':
        """
        Append one message.

        Raises:
            SessionResolved: If the session is resolved
        """
        if self.is_resolved:
            raise SessionResolved(self.id)
        message = self._next_message(Sender(sender), text, MessageKind(kind), now, self.messages)
        return self._with_messages([message], **self._pickup_changes(message))

    def _pickup_changes(self, message: ChatMessage) -> Dict[str, Any]:
        if message.sender == Sender.ADMIN:
            return {"unread_count": 0, "awaiting_admin_since": None}
        if message.sender == Sender.USER and self.is_escalated:
            return {
                "unread_count": self.unread_count + 1,
                "awaiting_admin_since": self.awaiting_admin_since or message.timestamp,
            }
        return {}

    def escalate(
        self,
        contact_email: Optional[str] = None,
        user_id: Optional[str] = None,
        history: Optional[Iterable[HistoryEntry]] = None,
        notice_text: str = "",
        now: Optional[datetime] = None
    ) -> 'ChatSession':
        """
        Hand the conversation over to the admin queue.

        Already pending or active sessions are returned unchanged. History is
        imported only into an empty log so retries never duplicate it.

        Raises:
            SessionResolved: If the session is resolved
            ContactRequired: If there is no user id and no email to reach the user
        """
        if self.status in (SessionStatus.PENDING_ADMIN, SessionStatus.ACTIVE):
            return self
        if self.is_resolved:
            raise SessionResolved(self.id)

        email = contact_email or self.user_email
        identity = user_id or self.user_id
        if not email and not identity:
            raise ContactRequired(self.id)

        now = ensure_utc(now) if now is not None else utc_now()
        new_messages: List[ChatMessage] = []

        if history and not self.messages:
            for entry in history:
                # Imported lines keep their own time but never run ahead of now
                stamp = entry.timestamp if entry.timestamp is not None else now
                stamp = min(ensure_utc(stamp), now)
                new_messages.append(
                    self._next_message(entry.sender, entry.text, entry.kind, stamp,
                                       self.messages + tuple(new_messages))
                )

        notice = self._next_message(
            Sender.BOT,
            notice_text.replace("{email}", email or "your account email"),
            MessageKind.ESCALATION_NOTICE,
            now,
            self.messages + tuple(new_messages)
        )
        new_messages.append(notice)

        return self._with_messages(
            new_messages,
            status=SessionStatus.PENDING_ADMIN,
            user_email=email,
            user_id=identity,
            unread_count=self.unread_count + 1,
            awaiting_admin_since=self.awaiting_admin_since or notice.timestamp,
        )

    def claim(self, admin_id: str) -> 'ChatSession':
        """
        Assign the session to ``admin_id`` (first writer wins).

        Raises:
            InvalidTransition: If the session was never escalated
            StaleAssignment: If another admin owns or resolved the session
            SessionResolved: If this admin already resolved it
        """
        if self.status == SessionStatus.BOT_HANDLED:
            raise InvalidTransition(
                f"Chat session {self.id} has not been escalated",
                session_id=self.id
            )
        if self.assigned_admin_id is not None and self.assigned_admin_id != admin_id:
            raise StaleAssignment(self.id, self.assigned_admin_id)
        if self.is_resolved:
            raise SessionResolved(self.id)
        if self.status == SessionStatus.ACTIVE:
            return self
        return self._evolve(status=SessionStatus.ACTIVE, assigned_admin_id=admin_id)

    def append_admin_message(
        self,
        admin_id: str,
        text: str,
        now: Optional[datetime] = None
    ) -> 'ChatSession':
        """Claim (if needed) and append an admin reply."""
        return self.claim(admin_id).append(Sender.ADMIN, text, now=now)

    def resolve(
        self,
        admin_id: str,
        closing_text: str,
        now: Optional[datetime] = None
    ) -> 'ChatSession':
        """
        Append the closing notice and move to resolved.

        Resolving an already resolved session as its admin is a no-op.
        """
        if self.status == SessionStatus.BOT_HANDLED:
            raise InvalidTransition(
                f"Chat session {self.id} has not been escalated",
                session_id=self.id
            )
        if self.assigned_admin_id is not None and self.assigned_admin_id != admin_id:
            raise StaleAssignment(self.id, self.assigned_admin_id)
        if self.is_resolved:
            return self

        closing = self._next_message(Sender.ADMIN, closing_text, MessageKind.TEXT, now, self.messages)
        return self._with_messages(
            [closing],
            status=SessionStatus.RESOLVED,
            assigned_admin_id=admin_id,
            unread_count=0,
            awaiting_admin_since=None,
        )


__all__ = [
    'SessionStatus',
    'Sender',
    'MessageKind',
    'ChatMessage',
    'HistoryEntry',
    'AdminPresence',
    'ChatSession',
    'utc_now',
    'ensure_utc',
    'check_session_id',
    'normalize_email',
    'make_message_id',
    'parse_message_id',
]
