"""
Client-side transcript reconciliation.

Messages reach a client over two paths: push frames and HTTP polls (plus the
confirmation of an HTTP send). Both paths feed the same reducer, which keys
messages by id, so a message seen on both paths appears once and the
transcript is always ordered by id regardless of arrival order.

The poll cursor is tracked separately from the newest message: it only
advances on poll responses and full snapshots, so a reply persisted before
the client's own later send is still returned by the next poll.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..models.chat import ChatMessage, ChatSession, SessionStatus
from ..models.events import ServerEvent, ServerEventType

logger = logging.getLogger(__name__)

MessageLike = Union[ChatMessage, Dict[str, Any]]

MESSAGE_EVENTS = (
    ServerEventType.ADMIN_MESSAGE,
    ServerEventType.NEW_USER_MESSAGE,
    ServerEventType.MESSAGE_SENT,
)


def _as_message(item: MessageLike) -> ChatMessage:
    if isinstance(item, ChatMessage):
        return item
    return ChatMessage.model_validate(item)


def _max_id(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if a is None or b is None:
        return a or b
    return max(a, b)


def merge_messages(
    current: Sequence[ChatMessage],
    incoming: Iterable[MessageLike]
) -> Tuple[ChatMessage, ...]:
    """
    Merge two message collections by id.

    Pure and idempotent: merging a message that is already present returns
    an equal transcript. The first copy of an id wins.

    Returns:
        Messages ordered by id
    """
    by_id: Dict[str, ChatMessage] = {m.id: m for m in current}
    for item in incoming:
        message = _as_message(item)
        if message.id in by_id:
            logger.debug(f"Dropping duplicate delivery of {message.id}")
            continue
        by_id[message.id] = message
    return tuple(sorted(by_id.values(), key=lambda m: m.id))


@dataclass(frozen=True)
class Transcript:
    """Immutable client view of one session."""
    session_id: str
    status: Optional[SessionStatus] = None
    messages: Tuple[ChatMessage, ...] = field(default_factory=tuple)
    assigned_admin_id: Optional[str] = None
    # Highest id the hub has confirmed through a poll or snapshot
    poll_cursor: Optional[str] = None

    @property
    def last_message_id(self) -> Optional[str]:
        return self.messages[-1].id if self.messages else None

    @property
    def is_resolved(self) -> bool:
        return self.status == SessionStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "status": self.status.value if self.status else None,
            "assignedAdminId": self.assigned_admin_id,
            "messages": [m.model_dump(mode="json", by_alias=True) for m in self.messages],
            "pollCursor": self.poll_cursor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transcript':
        status = data.get("status")
        return cls(
            session_id=data["sessionId"],
            status=SessionStatus(status) if status else None,
            messages=merge_messages((), data.get("messages") or ()),
            assigned_admin_id=data.get("assignedAdminId"),
            poll_cursor=data.get("pollCursor"),
        )


class TranscriptReconciler:
    """
    Holds the current ``Transcript`` and folds deliveries into it.

    Each ``apply_*`` call returns True when the transcript changed.
    """

    def __init__(self, session_id: str, transcript: Optional[Transcript] = None):
        if transcript is not None and transcript.session_id != session_id:
            raise ValueError(
                f"Transcript belongs to {transcript.session_id}, not {session_id}"
            )
        self.session_id = session_id
        self.transcript = transcript or Transcript(session_id=session_id)

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self.transcript.messages

    @property
    def status(self) -> Optional[SessionStatus]:
        return self.transcript.status

    @property
    def last_message_id(self) -> Optional[str]:
        return self.transcript.last_message_id

    @property
    def poll_cursor(self) -> Optional[str]:
        return self.transcript.poll_cursor

    @property
    def is_terminal(self) -> bool:
        return self.transcript.is_resolved

    def should_reconnect(self) -> bool:
        """Push reconnects stop once the session is resolved."""
        return not self.is_terminal

    def _update(self, transcript: Transcript) -> bool:
        # resolved is terminal; a late frame or poll cannot reopen it
        if self.transcript.is_resolved and not transcript.is_resolved:
            transcript = replace(transcript, status=SessionStatus.RESOLVED)
        if transcript == self.transcript:
            return False
        self.transcript = transcript
        return True

    def apply_messages(
        self,
        messages: Iterable[MessageLike],
        status: Optional[SessionStatus] = None
    ) -> bool:
        """
        Merge messages for this session; others are ignored.

        The poll cursor does not move: these are echoes and push frames,
        which can arrive ahead of messages the hub has not yet handed out.
        """
        return self._merge(self._own(messages), status)

    def apply_session(self, session: ChatSession) -> bool:
        """Fold a full ``session_data`` snapshot."""
        if session.id != self.session_id:
            logger.debug(f"Ignoring snapshot for session {session.id}")
            return False
        return self._update(Transcript(
            session_id=self.session_id,
            status=session.status,
            messages=merge_messages(self.transcript.messages, session.messages),
            assigned_admin_id=session.assigned_admin_id,
            poll_cursor=_max_id(self.transcript.poll_cursor, session.last_message_id),
        ))

    def apply_poll(self, payload: Dict[str, Any]) -> bool:
        """Fold a ``{hasNewMessages, messages, sessionStatus}`` poll response."""
        status = payload.get("sessionStatus")
        own = self._own(payload.get("messages") or ())
        cursor = self.transcript.poll_cursor
        for message in own:
            cursor = _max_id(cursor, message.id)
        return self._merge(
            own,
            status=SessionStatus(status) if status else None,
            poll_cursor=cursor,
        )

    def _own(self, messages: Iterable[MessageLike]) -> List[ChatMessage]:
        own = []
        for item in messages:
            message = _as_message(item)
            if message.session_id != self.session_id:
                logger.debug(f"Ignoring message {message.id} for session {message.session_id}")
                continue
            own.append(message)
        return own

    def _merge(self, own: List[ChatMessage], status: Optional[SessionStatus], **changes: Any) -> bool:
        return self._update(replace(
            self.transcript,
            messages=merge_messages(self.transcript.messages, own),
            status=status or self.transcript.status,
            **changes
        ))

    def apply_event(self, event: ServerEvent) -> bool:
        """
        Fold a push frame.

        Frames that carry no transcript data (``connected``, ``error``,
        ``active_sessions``, ``escalation_request``) leave it unchanged.
        """
        try:
            if event.type == ServerEventType.SESSION_DATA:
                return self.apply_session(ChatSession.from_document(event.data))
            if event.type in MESSAGE_EVENTS:
                return self.apply_messages([event.data])
        except ValidationError as e:
            logger.warning(f"Discarding malformed {event.type.value} frame: {e}")
        return False


__all__ = ['merge_messages', 'Transcript', 'TranscriptReconciler']
