"""
Admin presence tracking.

Presence is derived, never stored as a flag: an admin is online while their
last heartbeat is younger than the stale threshold.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..models.chat import AdminPresence, ensure_utc, utc_now
from ..session.session_store import SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class PresenceTracker:
    """
    Heartbeat-based admin availability.

    Presence only shapes escalation notice wording and the admin-status
    endpoint; it never gates escalation.
    """

    def __init__(
        self,
        store: SessionStore,
        stale_threshold_seconds: float = 120,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.stale_threshold = timedelta(seconds=stale_threshold_seconds)
        self.clock = clock or utc_now

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    async def heartbeat(self, admin_id: str) -> AdminPresence:
        presence = await self.store.record_heartbeat(admin_id, self.now())
        logger.debug(f"Heartbeat from admin {admin_id}")
        return presence

    def _is_fresh(self, presence: AdminPresence, now: datetime) -> bool:
        return now - presence.last_heartbeat_at < self.stale_threshold

    async def is_online(self, admin_id: str, now: Optional[datetime] = None) -> bool:
        presence = await self.store.get_presence(admin_id)
        if presence is None:
            return False
        return self._is_fresh(presence, ensure_utc(now) if now else self.now())

    async def online_admins(self, now: Optional[datetime] = None) -> List[str]:
        """Ids of admins with a fresh heartbeat, sorted."""
        now = ensure_utc(now) if now else self.now()
        return sorted(
            p.admin_id for p in await self.store.list_presence()
            if self._is_fresh(p, now)
        )

    async def is_any_admin_online(self, now: Optional[datetime] = None) -> bool:
        return bool(await self.online_admins(now))


__all__ = ['PresenceTracker', 'Clock']
