"""Tests for the role hierarchy resolver: primary-only, expiry-aware, level direction."""

from datetime import timedelta

import pytest

from authz.services.role_hierarchy import (
    NO_ROLE, NoRole, RoleHierarchyResolver, RoleLevel, level_satisfies,
)


class TestLevelSatisfies:
    """Lower numeric level means more authority"""

    def test_more_privileged_level_satisfies_threshold(self):
        assert level_satisfies(3, 1) is True

    def test_less_privileged_level_does_not_satisfy(self):
        assert level_satisfies(3, 5) is False

    def test_equal_level_satisfies(self):
        assert level_satisfies(3, 3) is True

    def test_no_role_never_satisfies(self):
        assert level_satisfies(100, NO_ROLE) is False

    def test_role_level_value_is_unwrapped(self):
        assert level_satisfies(2, RoleLevel(role_id=1, role_name="OWNER", level=1)) is True
        assert level_satisfies(2, RoleLevel(role_id=4, role_name="CUSTOMER", level=4)) is False


class TestNoRole:

    def test_singleton(self):
        assert NoRole() is NO_ROLE

    def test_falsy(self):
        assert not NO_ROLE


class TestPrimaryLevel:

    @pytest.fixture
    def resolver(self, store):
        return RoleHierarchyResolver(store)

    def test_primary_role_level(self, factory, resolver):
        user = factory.user("dealer@demo.com")
        subdealer = factory.role("SUBDEALER", 3)
        factory.assign(user, subdealer, primary=True)

        level = resolver.primary_level(user.id)

        assert level == RoleLevel(role_id=subdealer.id, role_name="SUBDEALER", level=3)

    def test_non_primary_roles_are_ignored(self, factory, resolver):
        user = factory.user("helper@demo.com")
        factory.assign(user, factory.role("ADMIN", 2), primary=False)

        assert resolver.primary_level(user.id) is NO_ROLE

    def test_expired_primary_role_is_no_role(self, factory, resolver, clock):
        user = factory.user("former@demo.com")
        factory.assign(user, factory.role("ADMIN", 2), primary=True, expires_at=clock.now - timedelta(minutes=1))

        assert resolver.primary_level(user.id) is NO_ROLE

    def test_future_expiry_still_counts(self, factory, resolver, clock):
        user = factory.user("temp@demo.com")
        factory.assign(user, factory.role("ADMIN", 2), primary=True, expires_at=clock.now + timedelta(days=1))

        assert resolver.primary_level(user.id).level == 2

    def test_principal_without_assignments(self, factory, resolver):
        user = factory.user("nobody@demo.com")
        assert resolver.primary_level(user.id) is NO_ROLE
        assert resolver.principal_satisfies(user.id, 4) is False

    def test_principal_satisfies(self, factory, resolver):
        user = factory.user("admin@demo.com")
        factory.assign(user, factory.role("ADMIN", 2), primary=True)

        assert resolver.principal_satisfies(user.id, 3) is True
        assert resolver.principal_satisfies(user.id, 1) is False
