"""Read-only query client for the authorization store."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from authz.models import Permission, Role, RolePermission, User, UserPermission, UserRole
from authz.core.exceptions import StoreUnavailable, UnknownPrincipal

logger = logging.getLogger("authz")

PrincipalId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PrincipalRecord:
    id: int
    email: str
    is_active: bool


@dataclass(frozen=True)
class AssignmentRecord:
    role_id: int
    role_name: str
    level: int
    is_primary: bool
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class DirectGrantRecord:
    capability: str
    granted: bool
    expires_at: Optional[datetime] = None


class AuthorizationStore:
    """Parameterized read queries over roles, permissions and grant edges.

    Every query opens its own session from the injected factory. Expired
    assignments and direct grants are filtered in SQL and never mutated.
    Any ``SQLAlchemyError`` surfaces as ``StoreUnavailable``.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            logger.error("Authorization store query '%s' failed: %s", operation, e)
            raise StoreUnavailable(f"Authorization store query '{operation}' failed") from e
        finally:
            db.close()

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def find_principal(self, identifier: PrincipalId) -> PrincipalRecord:
        """Look a principal up by numeric id or by (case-insensitive) email.

        Raises:
            UnknownPrincipal: If no user matches.
        """
        with self._session("find_principal") as db:
            query = db.query(User.id, User.email, User.is_active)
            if isinstance(identifier, int):
                query = query.filter(User.id == identifier)
            else:
                query = query.filter(func.lower(User.email) == identifier.strip().lower())
            row = query.first()

        if row is None:
            raise UnknownPrincipal(f"Principal '{identifier}' not found")
        return PrincipalRecord(id=row.id, email=row.email, is_active=bool(row.is_active))

    def role_assignments(self, principal_id: int) -> List[AssignmentRecord]:
        """Non-expired role assignments for a principal, primary first."""
        now = self.now()
        with self._session("role_assignments") as db:
            rows = (
                db.query(UserRole.role_id, UserRole.is_primary, UserRole.expires_at, Role.name, Role.level)
                .join(Role, Role.id == UserRole.role_id)
                .filter(
                    UserRole.user_id == principal_id,
                    or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
                )
                .order_by(UserRole.is_primary.desc(), UserRole.id)
                .all()
            )

        return [
            AssignmentRecord(
                role_id=r.role_id,
                role_name=r.name,
                level=r.level,
                is_primary=bool(r.is_primary),
                expires_at=ensure_utc(r.expires_at),
            )
            for r in rows
        ]

    def primary_role(self, principal_id: int) -> Optional[AssignmentRecord]:
        """The primary, non-expired assignment, or None.

        Where the database cannot enforce a single primary row (MySQL), the
        least privileged of the duplicates wins.
        """
        primaries = [a for a in self.role_assignments(principal_id) if a.is_primary]
        if not primaries:
            return None
        if len(primaries) > 1:
            logger.warning(
                "Principal %s has %d primary roles; using the least privileged",
                principal_id, len(primaries),
            )
        return max(primaries, key=lambda a: a.level)

    def role_grants(self, role_ids: Iterable[int]) -> List[str]:
        """Names of system-defined permissions granted (``granted = true``) to any of the roles."""
        role_ids = list(role_ids)
        if not role_ids:
            return []
        with self._session("role_grants") as db:
            rows = (
                db.query(Permission.name)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .filter(
                    RolePermission.role_id.in_(role_ids),
                    RolePermission.granted.is_(True),
                    Permission.is_system.is_(True),
                )
                .distinct()
                .all()
            )
        return [r.name for r in rows]

    def direct_grants(self, principal_id: int) -> List[DirectGrantRecord]:
        """Non-expired direct grants and denials for a principal."""
        now = self.now()
        with self._session("direct_grants") as db:
            rows = (
                db.query(Permission.name, UserPermission.granted, UserPermission.expires_at)
                .join(Permission, Permission.id == UserPermission.permission_id)
                .filter(
                    UserPermission.user_id == principal_id,
                    or_(UserPermission.expires_at.is_(None), UserPermission.expires_at > now),
                )
                .all()
            )
        return [
            DirectGrantRecord(
                capability=r.name,
                granted=bool(r.granted),
                expires_at=ensure_utc(r.expires_at),
            )
            for r in rows
        ]

    def capability_exists(self, name: str) -> bool:
        with self._session("capability_exists") as db:
            return db.query(Permission.id).filter(Permission.name == name).first() is not None

    def list_capabilities(self, category: Optional[str] = None) -> List[Permission]:
        """Catalog listing ordered by category and name."""
        with self._session("list_capabilities") as db:
            query = db.query(Permission)
            if category:
                query = query.filter(Permission.category == category)
            permissions = query.order_by(Permission.category, Permission.name).all()
            db.expunge_all()
        return permissions
