"""Security event model — append-only record of denied access."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func
from authz.db.base import Base


class SecurityEvent(Base):
    """One denied access attempt.

    This table is APPEND-ONLY: rows are written when a permission or role
    level gate refuses a request and are never updated.
    """
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False, index=True)  # e.g. "unauthorized_access"
    user_email = Column(String(255), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    severity = Column(String(20), nullable=False, default="low", index=True)  # low, medium, high, critical
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
