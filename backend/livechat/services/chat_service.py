"""
Transport-agnostic hub operations.

Both the push channel handler and the HTTP routes call into ChatService, so
a message takes the same path whichever transport carried it: validate,
persist through the store's atomic modify, then mirror to the other party
over push. The pull fallback reads the same store.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..api.connections import ConnectionManager
from ..config import Settings
from ..exceptions import MessageRejected, SessionNotFound
from ..models.chat import ChatMessage, ChatSession, Sender, SessionStatus
from ..models.events import ServerEvent
from ..presence.tracker import PresenceTracker
from ..session.session_store import SessionStore
from ..utils.telemetry import metrics_collector, track_heartbeat, track_poll
from .session_listing import (
    OPEN_STATUSES,
    active_session_summaries,
    active_sessions_event,
    awaiting_reply_summaries,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageResult:
    """A persisted message and whether push reached the other party."""
    session: ChatSession
    message: ChatMessage
    forwarded: bool


@dataclass(frozen=True)
class AdminJoinResult:
    session: Optional[ChatSession]
    active_sessions: List[Dict[str, Any]]
    observing: bool = False


@dataclass(frozen=True)
class PollResult:
    has_new_messages: bool
    messages: List[ChatMessage] = field(default_factory=list)
    session_status: SessionStatus = SessionStatus.BOT_HANDLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasNewMessages": self.has_new_messages,
            "messages": [m.model_dump(mode="json", by_alias=True) for m in self.messages],
            "sessionStatus": self.session_status.value,
        }


class ChatService:
    """Hub operations shared by the push and HTTP transports."""

    def __init__(
        self,
        store: SessionStore,
        presence: PresenceTracker,
        connections: ConnectionManager,
        settings: Settings
    ):
        self.store = store
        self.presence = presence
        self.connections = connections
        self.settings = settings

    def _validate_text(self, text: str, session_id: str) -> str:
        text = (text or "").strip()
        if not text:
            raise MessageRejected("Message cannot be empty", session_id=session_id)
        if len(text) > self.settings.max_message_length:
            raise MessageRejected(
                f"Message exceeds {self.settings.max_message_length} characters",
                session_id=session_id
            )
        return text

    async def _refresh_admin_feeds(self) -> int:
        return await self.connections.broadcast_to_admins(await active_sessions_event(self.store))

    # ===========================
    # Joins
    # ===========================

    async def join_user(self, session_id: str, user_email: Optional[str] = None) -> ChatSession:
        """Attach point for an end user: get or lazily create the session."""
        session = await self.store.get_or_create(session_id, user_email=user_email)
        logger.info(f"User joined session {session_id} ({session.status.value})")
        return session

    async def join_admin(self, admin_id: str, session_id: Optional[str] = None) -> AdminJoinResult:
        """
        Attach point for an admin.

        Joining a pending session claims it. Joining a session owned by
        another admin is observe-only.

        Raises:
            SessionNotFound: If ``session_id`` is unknown
        """
        await self.presence.heartbeat(admin_id)

        session = None
        observing = False
        if session_id:
            def mutator(current: Optional[ChatSession]) -> ChatSession:
                if current is None:
                    raise SessionNotFound(session_id)
                if current.status == SessionStatus.PENDING_ADMIN:
                    return current.claim(admin_id)
                return current

            session = await self.store.modify(session_id, mutator)
            observing = session.assigned_admin_id not in (None, admin_id)
            if observing:
                logger.info(
                    f"Admin {admin_id} observing session {session_id} "
                    f"(assigned to {session.assigned_admin_id})"
                )
            else:
                logger.info(f"Admin {admin_id} joined session {session_id} ({session.status.value})")

        summaries = await active_session_summaries(self.store)
        if session is not None and not observing:
            await self._refresh_admin_feeds()

        return AdminJoinResult(session=session, active_sessions=summaries, observing=observing)

    # ===========================
    # Messages
    # ===========================

    async def send_user_message(
        self,
        session_id: str,
        text: str,
        user_email: Optional[str] = None,
        transport: str = "push"
    ) -> MessageResult:
        """
        Persist a user message, then forward it to the admin side.

        Raises:
            SessionNotFound: If the session is unknown
            SessionResolved: If the session is closed
            MessageRejected: If the text is empty or too long
        """
        text = self._validate_text(text, session_id)
        appended: Dict[str, ChatMessage] = {}

        def mutator(current: Optional[ChatSession]) -> ChatSession:
            if current is None:
                raise SessionNotFound(session_id)
            updated = current.with_contact(user_email).append(Sender.USER, text)
            appended["message"] = updated.messages[-1]
            return updated

        session = await self.store.modify(session_id, mutator)
        message = appended["message"]
        metrics_collector.record_message(Sender.USER.value, transport)

        event = ServerEvent.new_user_message(message)
        if session.assigned_admin_id:
            forwarded = await self.connections.send_to_session_admin(
                session_id, event, session.assigned_admin_id
            )
        elif session.status == SessionStatus.PENDING_ADMIN:
            forwarded = await self.connections.broadcast_to_admins(event) > 0
        else:
            forwarded = await self.connections.send_to_session_admin(session_id, event)

        logger.debug(f"User message {message.id} in {session_id} (forwarded={forwarded})")
        return MessageResult(session=session, message=message, forwarded=forwarded)

    async def send_admin_message(
        self,
        session_id: str,
        admin_id: str,
        text: str,
        transport: str = "push"
    ) -> MessageResult:
        """
        Persist an admin reply (claiming a pending session), then push it to the user.

        Raises:
            SessionNotFound: If the session is unknown
            StaleAssignment: If another admin owns or resolved the session
            InvalidTransition: If the session was never escalated
            MessageRejected: If the text is empty or too long
        """
        text = self._validate_text(text, session_id)
        appended: Dict[str, ChatMessage] = {}

        def mutator(current: Optional[ChatSession]) -> ChatSession:
            if current is None:
                raise SessionNotFound(session_id)
            updated = current.append_admin_message(admin_id, text)
            appended["message"] = updated.messages[-1]
            return updated

        session = await self.store.modify(session_id, mutator)
        message = appended["message"]
        metrics_collector.record_message(Sender.ADMIN.value, transport)
        await self.presence.heartbeat(admin_id)

        forwarded = await self.connections.send_to_user(session_id, ServerEvent.admin_message(message))
        await self._refresh_admin_feeds()

        logger.debug(f"Admin {admin_id} message {message.id} in {session_id} (forwarded={forwarded})")
        return MessageResult(session=session, message=message, forwarded=forwarded)

    async def close_session(self, session_id: str, admin_id: str) -> ChatSession:
        """
        Resolve a session with the closing notice.

        Closing an already resolved session as its admin is a no-op.

        Raises:
            SessionNotFound: If the session is unknown
            StaleAssignment: If another admin owns or resolved the session
        """
        outcome = {"closed_now": False}

        def mutator(current: Optional[ChatSession]) -> ChatSession:
            if current is None:
                raise SessionNotFound(session_id)
            resolved = current.resolve(admin_id, self.settings.session_closed_notice)
            outcome["closed_now"] = resolved is not current
            return resolved

        session = await self.store.modify(session_id, mutator)

        if not outcome["closed_now"]:
            logger.debug(f"Session {session_id} already resolved")
            return session

        closing = session.messages[-1]
        await self.connections.send_to_user(session_id, ServerEvent.admin_message(closing))
        await self.connections.send_to_user(session_id, ServerEvent.session_data(session))
        await self._refresh_admin_feeds()

        logger.info(f"Session {session_id} resolved by admin {admin_id}")
        return session

    # ===========================
    # Reads
    # ===========================

    async def poll(
        self,
        session_id: str,
        last_message_id: Optional[str] = None,
        since: Optional[datetime] = None,
        sender: Optional[Sender] = None
    ) -> PollResult:
        """
        Read-only pull of messages after a cursor.

        Raises:
            SessionNotFound: If the session is unknown
        """
        session = await self.store.require(session_id)
        messages = session.messages_after(last_message_id, since, sender)
        track_poll(bool(messages))
        return PollResult(
            has_new_messages=bool(messages),
            messages=messages,
            session_status=session.status
        )

    async def get_session(self, session_id: str) -> ChatSession:
        return await self.store.require(session_id)

    async def list_sessions(self, include_resolved: bool = False) -> List[Dict[str, Any]]:
        """Escalated sessions for the admin dashboard, most recent first."""
        statuses = OPEN_STATUSES + ((SessionStatus.RESOLVED,) if include_resolved else ())
        return [s.summary() for s in await self.store.list_sessions(statuses)]

    async def active_sessions(self) -> List[Dict[str, Any]]:
        return await active_session_summaries(self.store)

    async def awaiting_reply(self) -> List[Dict[str, Any]]:
        """
        Sessions waiting on an admin reply.

        Persisted with the session, so an admin coming online picks up
        requests and messages that arrived while no feed was connected.
        """
        return await awaiting_reply_summaries(self.store)

    # ===========================
    # Presence
    # ===========================

    async def admin_heartbeat(self, admin_id: str) -> None:
        await self.presence.heartbeat(admin_id)
        track_heartbeat()

    async def admin_status(self) -> Dict[str, Any]:
        online = await self.presence.online_admins()
        return {"isOnline": bool(online), "onlineAdmins": online}


__all__ = ['ChatService', 'MessageResult', 'AdminJoinResult', 'PollResult']
