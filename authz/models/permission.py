"""Permission (capability) catalog model."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from authz.db.base import Base


class Permission(Base):
    """A named action identifier such as ``users.create``.

    The catalog is seeded externally; ``is_system`` separates the seeded
    system permissions from custom ones created by administrators.
    """
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    resource = Column(String(100), nullable=True)
    action = Column(String(50), nullable=True)
    is_system = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
