"""User (principal) model."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from sqlalchemy.orm import relationship, validates
from authz.db.base import Base


class User(Base):
    """Platform user; the principal that permissions are resolved for."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    role_assignments = relationship(
        "UserRole", back_populates="user", cascade="all, delete-orphan", lazy="selectin",
    )
    direct_grants = relationship(
        "UserPermission",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        foreign_keys="[UserPermission.user_id]",
    )

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if value else value
