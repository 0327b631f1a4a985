"""Grant edge models: role grants, direct grants and role assignments."""

from datetime import timezone

from sqlalchemy import (
    Column, Integer, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, func, text,
)
from sqlalchemy.orm import relationship, validates
from authz.db.base import Base


def to_utc(value):
    """Expiries are stored as UTC wall time; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


class RolePermission(Base):
    """Role -> permission edge.

    A missing row means the role does not address the permission, which is
    not the same as a row with ``granted = false``.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    granted = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    role = relationship("Role")
    permission = relationship("Permission")


class UserPermission(Base):
    """Direct per-user override (grant or explicit denial) with optional expiry.

    Expired rows are left in place and filtered out at query time.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permissions_user_permission"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    granted = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    granted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="direct_grants", foreign_keys=[user_id])
    permission = relationship("Permission")

    @validates("expires_at")
    def _expires_at_utc(self, key, value):
        return to_utc(value)


class UserRole(Base):
    """User -> role assignment. At most one assignment per user is primary."""
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
        # MySQL has no partial indexes; the resolver tolerates duplicates there.
        Index(
            "uq_user_roles_one_primary",
            "user_id",
            unique=True,
            sqlite_where=text("is_primary = 1"),
            postgresql_where=text("is_primary"),
        ).ddl_if(dialect=("sqlite", "postgresql")),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="role_assignments")
    role = relationship("Role", lazy="joined")

    @validates("expires_at")
    def _expires_at_utc(self, key, value):
        return to_utc(value)
