"""
SQL records backing the sql session store.
"""
from sqlalchemy import Column, String, DateTime, JSON, Integer

from ..database import Base


class ChatSessionRecord(Base):
    """
    One chat session document.

    Header columns are denormalized from ``document`` for listing queries;
    ``version`` is the optimistic lock counter.
    """
    __tablename__ = "chat_sessions"

    id = Column(String(255), primary_key=True)
    status = Column(String(20), nullable=False, index=True)
    assigned_admin_id = Column(String(255), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=False, index=True)
    document = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<ChatSessionRecord(id={self.id}, status={self.status}, version={self.version})>"


class AdminPresenceRecord(Base):
    """Last heartbeat per admin."""
    __tablename__ = "admin_presence"

    admin_id = Column(String(255), primary_key=True)
    last_heartbeat_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<AdminPresenceRecord(admin_id={self.admin_id}, at={self.last_heartbeat_at})>"
