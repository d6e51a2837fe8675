"""
Bot-to-human escalation.

Turns a bot-handled conversation into one waiting for an admin, and tells
every connected admin about it.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..api.connections import ConnectionManager
from ..config import Settings
from ..models.chat import ChatMessage, ChatSession, HistoryEntry, SessionStatus
from ..models.events import ServerEvent
from ..presence.tracker import PresenceTracker
from ..session.session_store import SessionStore
from ..utils.telemetry import metrics_collector
from .session_listing import active_sessions_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationResult:
    """Outcome of an escalation request."""
    session: ChatSession
    notice: Optional[ChatMessage]
    admin_online: bool
    escalated_now: bool
    notified_admins: int = 0

    @property
    def status(self) -> SessionStatus:
        return self.session.status


class EscalationService:
    """
    Executes escalation requests.

    The request is idempotent: repeating it for a pending or active session
    returns the current state without a second notice or broadcast.
    """

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

    def _notice_text(self, admin_online: bool) -> str:
        if admin_online:
            return self.settings.escalation_notice_online
        return self.settings.escalation_notice_offline

    async def request_escalation(
        self,
        session_id: str,
        contact_email: Optional[str] = None,
        recent_messages: Optional[Iterable[HistoryEntry]] = None,
        user_id: Optional[str] = None,
        admin_online_hint: Optional[bool] = None
    ) -> EscalationResult:
        """
        Escalate a session to the admin queue.

        Args:
            session_id: Session identifier (created lazily if unknown)
            contact_email: Where to reach the user if no admin replies live
            recent_messages: Bot transcript to import into an empty log
            user_id: Authenticated identity, satisfies the contact requirement
            admin_online_hint: Client's view of admin availability (advisory)

        Returns:
            EscalationResult

        Raises:
            ContactRequired: If neither a user id nor an email is known
            SessionResolved: If the session is already closed
        """
        admin_online = await self.presence.is_any_admin_online()
        if admin_online_hint is not None and admin_online_hint != admin_online:
            logger.info(
                f"Client presence hint for session {session_id} disagrees with server "
                f"(hint={admin_online_hint}, server={admin_online})"
            )

        limit = self.settings.escalation_history_limit
        history = list(recent_messages or [])
        history = history[-limit:] if limit else []
        notice_text = self._notice_text(admin_online)
        outcome = {"escalated_now": False, "imported": 0}

        def mutator(current: Optional[ChatSession]) -> ChatSession:
            session = current or ChatSession(id=session_id)
            escalated = session.escalate(
                contact_email=contact_email,
                user_id=user_id,
                history=history,
                notice_text=notice_text
            )
            outcome["escalated_now"] = escalated is not session
            outcome["imported"] = max(escalated.message_count - session.message_count - 1, 0)
            return escalated

        session = await self.store.modify(session_id, mutator)
        escalated_now = outcome["escalated_now"]

        notified = 0
        if escalated_now:
            logger.info(
                f"Session {session_id} escalated to admin queue "
                f"(admin_online={admin_online}, imported={outcome['imported']})"
            )
            notified = await self.connections.broadcast_to_admins(
                ServerEvent.escalation_request(session)
            )
            await self.connections.broadcast_to_admins(await active_sessions_event(self.store))
        else:
            logger.debug(f"Session {session_id} already {session.status.value}; escalation is a no-op")

        metrics_collector.record_escalation(admin_online, escalated_now)

        return EscalationResult(
            session=session,
            notice=session.latest_notice(),
            admin_online=admin_online,
            escalated_now=escalated_now,
            notified_admins=notified
        )


__all__ = ['EscalationService', 'EscalationResult']
