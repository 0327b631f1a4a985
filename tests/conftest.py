"""
Shared pytest fixtures for the authorization engine tests.

Provides:
- A throwaway SQLite authorization store per test
- A mutable clock for expiry-boundary tests
- AuthzFactory for roles, permissions, users and grant edges
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from authz.db.base import Base
from authz.db.session import create_db_engine, make_session_factory
from authz.models import Permission, Role, RolePermission, User, UserPermission, UserRole
from authz.services.decision_engine import DecisionEngine
from authz.services.store import AuthorizationStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class AuthzFactory:
    """Creates committed rows in the authorization store."""

    def __init__(self, db):
        self.db = db

    def permission(self, name: str, is_system: bool = True, category: Optional[str] = None) -> Permission:
        permission = self.db.query(Permission).filter(Permission.name == name).first()
        if permission is None:
            resource, _, action = name.partition(".")
            permission = Permission(
                name=name, category=category, resource=resource, action=action, is_system=is_system,
            )
            self.db.add(permission)
            self.db.commit()
        return permission

    def role(
        self,
        name: str,
        level: int,
        grants: Iterable[str] = (),
        denials: Iterable[str] = (),
    ) -> Role:
        role = Role(name=name, level=level)
        self.db.add(role)
        self.db.flush()
        for capability in grants:
            self.db.add(RolePermission(role_id=role.id, permission_id=self.permission(capability).id, granted=True))
        for capability in denials:
            self.db.add(RolePermission(role_id=role.id, permission_id=self.permission(capability).id, granted=False))
        self.db.commit()
        return role

    def user(self, email: str, active: bool = True) -> User:
        user = User(email=email, full_name=email.split("@")[0], is_active=active)
        self.db.add(user)
        self.db.commit()
        return user

    def assign(self, user: User, role: Role, primary: bool = True, expires_at: Optional[datetime] = None) -> UserRole:
        assignment = UserRole(user_id=user.id, role_id=role.id, is_primary=primary, expires_at=expires_at)
        self.db.add(assignment)
        self.db.commit()
        return assignment

    def direct(
        self,
        user: User,
        capability: str,
        granted: bool = True,
        expires_at: Optional[datetime] = None,
        is_system: bool = True,
    ) -> UserPermission:
        grant = UserPermission(
            user_id=user.id,
            permission_id=self.permission(capability, is_system=is_system).id,
            granted=granted,
            expires_at=expires_at,
        )
        self.db.add(grant)
        self.db.commit()
        return grant


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'authz.db'}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def factory(db) -> AuthzFactory:
    return AuthzFactory(db)


@pytest.fixture
def store(session_factory, clock) -> AuthorizationStore:
    return AuthorizationStore(session_factory, clock=clock)


@pytest.fixture
def engine(store) -> DecisionEngine:
    """Decision engine without a cache."""
    return DecisionEngine(store)
