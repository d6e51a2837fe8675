"""
Push connection registry.

Process-local index of open push connections. It is never authoritative:
every message is persisted before it is forwarded, so losing an entry (or
the whole registry on restart) only means the other side picks the message
up by polling instead.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..models.events import ServerEvent
from ..utils.telemetry import track_push_send_failure, update_push_connections

logger = logging.getLogger(__name__)


@dataclass
class SessionConnections:
    """Who is attached to one session right now."""
    user: Optional[Any] = None
    admin: Optional[Any] = None
    admin_id: Optional[str] = None


class ConnectionManager:
    """
    Routes outbound push frames.

    Connections only need an async ``send_json(dict)``; FastAPI's WebSocket
    qualifies, as does any test double.
    """

    def __init__(self):
        self.sessions: Dict[str, SessionConnections] = {}
        self.admin_connections: Dict[str, Any] = {}

    # ===========================
    # Registration
    # ===========================

    def attach_user(self, session_id: str, websocket: Any) -> None:
        entry = self.sessions.setdefault(session_id, SessionConnections())
        if entry.user is not None and entry.user is not websocket:
            logger.info(f"Replacing user connection for session {session_id}")
        entry.user = websocket
        logger.info(f"User attached to session {session_id}")
        self._update_gauges()

    def attach_admin(self, admin_id: str, websocket: Any, session_id: Optional[str] = None) -> None:
        """Register the admin feed and, optionally, the admin's view of one session."""
        self.admin_connections[admin_id] = websocket
        if session_id:
            entry = self.sessions.setdefault(session_id, SessionConnections())
            entry.admin = websocket
            entry.admin_id = admin_id
            logger.info(f"Admin {admin_id} attached to session {session_id}")
        else:
            logger.info(f"Admin {admin_id} attached to admin feed")
        self._update_gauges()

    def detach(self, websocket: Any) -> List[str]:
        """
        Drop every entry pointing at ``websocket``.

        Detaching an unknown connection is not an error.

        Returns:
            Descriptions of the removed entries
        """
        removed = []

        for admin_id, conn in list(self.admin_connections.items()):
            if conn is websocket:
                del self.admin_connections[admin_id]
                removed.append(f"admin:{admin_id}")

        for session_id, entry in list(self.sessions.items()):
            if entry.user is websocket:
                entry.user = None
                removed.append(f"user:{session_id}")
            if entry.admin is websocket:
                entry.admin = None
                entry.admin_id = None
                removed.append(f"session_admin:{session_id}")
            if entry.user is None and entry.admin is None:
                del self.sessions[session_id]

        if removed:
            logger.info(f"Detached connection ({', '.join(removed)})")
            self._update_gauges()
        return removed

    # ===========================
    # Delivery
    # ===========================

    async def _send(self, websocket: Any, event: ServerEvent) -> bool:
        try:
            await websocket.send_json(event.to_wire())
            return True
        except Exception as e:
            # Persisted already; the receiver recovers by polling
            logger.warning(f"Push send of {event.type.value} failed, detaching: {e}")
            track_push_send_failure()
            self.detach(websocket)
            return False

    async def send_to_user(self, session_id: str, event: ServerEvent) -> bool:
        entry = self.sessions.get(session_id)
        if entry is None or entry.user is None:
            return False
        return await self._send(entry.user, event)

    async def send_to_session_admin(
        self,
        session_id: str,
        event: ServerEvent,
        assigned_admin_id: Optional[str] = None
    ) -> bool:
        """Deliver to the admin viewing the session, else the assigned admin's feed."""
        entry = self.sessions.get(session_id)
        if entry is not None and entry.admin is not None:
            if assigned_admin_id is None or entry.admin_id == assigned_admin_id:
                return await self._send(entry.admin, event)

        if assigned_admin_id is not None:
            return await self.send_to_admin(assigned_admin_id, event)
        return False

    async def send_to_admin(self, admin_id: str, event: ServerEvent) -> bool:
        websocket = self.admin_connections.get(admin_id)
        if websocket is None:
            return False
        return await self._send(websocket, event)

    async def send(self, websocket: Any, event: ServerEvent) -> bool:
        """Reply on a specific connection (confirmations, errors, snapshots)."""
        return await self._send(websocket, event)

    async def broadcast_to_admins(self, event: ServerEvent) -> int:
        """
        Send to every admin feed connection.

        Returns:
            Number of connections that accepted the frame
        """
        delivered = 0
        seen = set()
        for websocket in list(self.admin_connections.values()):
            if id(websocket) in seen:
                continue
            seen.add(id(websocket))
            if await self._send(websocket, event):
                delivered += 1
        return delivered

    # ===========================
    # Introspection
    # ===========================

    def connected_admin_ids(self) -> List[str]:
        return sorted(self.admin_connections)

    def get_stats(self) -> Dict[str, int]:
        users = sum(1 for e in self.sessions.values() if e.user is not None)
        return {
            "user_connections": users,
            "admin_connections": len(self.admin_connections),
            "sessions_with_connections": len(self.sessions),
        }

    def _update_gauges(self) -> None:
        stats = self.get_stats()
        update_push_connections(stats["user_connections"], stats["admin_connections"])


__all__ = ['ConnectionManager', 'SessionConnections']
