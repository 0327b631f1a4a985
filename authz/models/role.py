"""Role model for RBAC."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from authz.db.base import Base


class Role(Base):
    """Named capability bundle with a hierarchical level (lower = more authority)."""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False, index=True)
    level = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    is_system = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
