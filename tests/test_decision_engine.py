"""Tests for the decision engine: reasons, fail-closed behaviour, batch helpers."""

from datetime import timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from authz.core.exceptions import InvalidInput, StoreUnavailable, UnknownPrincipal
from authz.services.decision_engine import (
    Decision, DecisionEngine, DecisionReason,
    normalize_principal_identifier, validate_capability_name,
)
from authz.services.permission_cache import InMemoryPermissionCache
from authz.services.store import AuthorizationStore


@pytest.fixture
def subdealer(factory):
    """SUBDEALER (level 3) granted vouchers.read through the role."""
    user = factory.user("dealer@demo.com")
    factory.assign(user, factory.role("SUBDEALER", 3, grants=["vouchers.read", "customers.read"]))
    factory.permission("users.create")
    return user


def broken_session_factory():
    session = MagicMock()
    session.query.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    return MagicMock(return_value=session)


class TestDecide:

    def test_role_granted(self, engine, subdealer):
        decision = engine.decide(subdealer.id, "vouchers.read")

        assert decision == Decision(True, DecisionReason.ROLE_GRANTED)
        assert engine.has_level(subdealer.id, 3) is True

    def test_direct_denial_beats_role_grant(self, engine, factory, subdealer):
        factory.direct(subdealer, "vouchers.read", granted=False)

        assert engine.decide(subdealer.id, "vouchers.read") == Decision(False, DecisionReason.DIRECT_DENIED)

    def test_direct_grant(self, engine, factory, subdealer):
        factory.direct(subdealer, "users.create", granted=True)

        assert engine.decide(subdealer.id, "users.create") == Decision(True, DecisionReason.DIRECT_GRANTED)

    def test_capability_nobody_granted(self, engine, subdealer):
        assert engine.decide(subdealer.id, "users.create") == Decision(False, DecisionReason.NOT_GRANTED)

    def test_expired_direct_grant_is_not_granted(self, engine, factory, clock):
        user = factory.user("w@demo.com")
        factory.direct(user, "reports.export", granted=True, expires_at=clock.now - timedelta(hours=1))

        assert engine.decide(user.id, "reports.export") == Decision(False, DecisionReason.NOT_GRANTED)

    def test_grant_expires_while_time_passes(self, engine, factory, clock):
        user = factory.user("temp@demo.com")
        factory.direct(user, "reports.export", granted=True, expires_at=clock.now + timedelta(minutes=10))

        assert engine.decide(user.id, "reports.export").allowed is True
        clock.advance(minutes=11)
        assert engine.decide(user.id, "reports.export").reason is DecisionReason.NOT_GRANTED

    def test_expiry_written_with_an_offset_is_compared_in_utc(self, engine, factory, clock):
        india = timezone(timedelta(hours=5, minutes=30))
        user = factory.user("ist@demo.com")
        factory.direct(user, "reports.export", expires_at=(clock.now - timedelta(hours=1)).astimezone(india))

        assert engine.decide(user.id, "reports.export") == Decision(False, DecisionReason.NOT_GRANTED)

    def test_future_offset_expiry_keeps_the_grant(self, engine, factory, clock):
        pacific = timezone(timedelta(hours=-8))
        user = factory.user("pst@demo.com")
        factory.direct(user, "reports.export", expires_at=(clock.now + timedelta(hours=1)).astimezone(pacific))
        factory.assign(
            user,
            factory.role("SUBDEALER", 3, grants=["vouchers.read"]),
            expires_at=(clock.now + timedelta(hours=2)).astimezone(pacific),
        )

        assert engine.decide(user.id, "reports.export").allowed is True
        assert engine.decide(user.id, "vouchers.read").allowed is True
        assert engine.aggregator.aggregate(engine.store.find_principal(user.id)).valid_until == clock.now + timedelta(hours=1)

        clock.advance(hours=1)
        assert engine.decide(user.id, "reports.export").reason is DecisionReason.NOT_GRANTED
        assert engine.decide(user.id, "vouchers.read").allowed is True

    def test_inactive_principal_is_denied(self, engine, factory):
        user = factory.user("gone@demo.com", active=False)
        factory.assign(user, factory.role("OWNER", 1, grants=["users.delete"]))
        factory.direct(user, "users.delete", granted=True)

        assert engine.decide(user.id, "users.delete") == Decision(False, DecisionReason.INACTIVE_PRINCIPAL)

    def test_lookup_by_email_is_case_insensitive(self, engine, factory):
        user = factory.user("Mixed.Case@Demo.com")
        factory.direct(user, "reports.export")

        assert engine.decide("MIXED.case@demo.COM", "reports.export").allowed is True
        assert engine.decide(f"{user.id}", "reports.export").allowed is True

    def test_capability_names_are_exact(self, engine, subdealer):
        assert engine.decide(subdealer.id, "VOUCHERS.READ").allowed is False

    def test_decision_is_truthy_only_when_allowed(self):
        assert Decision(True, DecisionReason.ROLE_GRANTED)
        assert not Decision(False, DecisionReason.NOT_GRANTED)


class TestFailClosed:

    @pytest.mark.parametrize("principal", ["", "   ", "not-an-email", "@demo.com", "user@", 0, -4, True, None, 1.5])
    def test_invalid_principal(self, engine, principal):
        assert engine.decide(principal, "users.read") == Decision(False, DecisionReason.ERROR, "invalid_input")

    @pytest.mark.parametrize("capability", ["", "users read", "users..read", ".users", "x" * 101, None, 7])
    def test_invalid_capability(self, engine, subdealer, capability):
        assert engine.decide(subdealer.id, capability) == Decision(False, DecisionReason.ERROR, "invalid_input")

    def test_unknown_principal(self, engine, subdealer):
        assert engine.decide(9999, "vouchers.read") == Decision(False, DecisionReason.ERROR, "unknown_principal")
        assert engine.decide("ghost@demo.com", "vouchers.read").detail == "unknown_principal"

    def test_unknown_capability(self, engine, subdealer):
        decision = engine.decide(subdealer.id, "rockets.launch")

        assert decision == Decision(False, DecisionReason.ERROR, "unknown_capability")

    def test_store_failure_denies(self, clock):
        engine = DecisionEngine(AuthorizationStore(broken_session_factory(), clock=clock))

        assert engine.decide(1, "users.read") == Decision(False, DecisionReason.ERROR, "store_unavailable")
        assert engine.has_level(1, 4) is False

    def test_unexpected_exception_denies(self, engine, subdealer):
        engine.aggregator = MagicMock()
        engine.aggregator.aggregate.side_effect = RuntimeError("boom")

        assert engine.decide(subdealer.id, "vouchers.read") == Decision(False, DecisionReason.ERROR, "internal_error")


class TestBatchChecks:

    def test_decide_many_keys_by_name(self, engine, factory, subdealer):
        factory.direct(subdealer, "customers.read", granted=False)

        decisions = engine.decide_many(subdealer.id, ["vouchers.read", "customers.read", "users.create", "bad name"])

        assert decisions["vouchers.read"].reason is DecisionReason.ROLE_GRANTED
        assert decisions["customers.read"].reason is DecisionReason.DIRECT_DENIED
        assert decisions["users.create"].reason is DecisionReason.NOT_GRANTED
        assert decisions["bad name"] == Decision(False, DecisionReason.ERROR, "invalid_input")

    def test_decide_many_for_unknown_principal(self, engine, subdealer):
        decisions = engine.decide_many(404, ["vouchers.read", "customers.read"])

        assert {d.detail for d in decisions.values()} == {"unknown_principal"}

    def test_has_all(self, engine, subdealer):
        assert engine.has_all(subdealer.id, ["vouchers.read", "customers.read"]) is True
        assert engine.has_all(subdealer.id, ["vouchers.read", "users.create"]) is False

    def test_has_all_with_nothing_required_is_denied(self, engine, subdealer):
        assert engine.has_all(subdealer.id, []) is False

    def test_has_any(self, engine, subdealer):
        assert engine.has_any(subdealer.id, ["users.create", "vouchers.read"]) is True
        assert engine.has_any(subdealer.id, ["users.create"]) is False
        assert engine.has_any(subdealer.id, []) is False


class TestHasLevel:

    def test_level_direction(self, engine, subdealer):
        assert engine.has_level(subdealer.id, 4) is True
        assert engine.has_level(subdealer.id, 2) is False

    def test_inactive_principal_has_no_level(self, engine, factory):
        user = factory.user("ex-owner@demo.com", active=False)
        factory.assign(user, factory.role("OWNER", 1))

        assert engine.has_level(user.id, 4) is False

    def test_unknown_principal_has_no_level(self, engine):
        assert engine.has_level("ghost@demo.com", 4) is False


class TestListGranted:

    def test_sorted_names_without_denials(self, engine, factory, subdealer):
        factory.direct(subdealer, "customers.read", granted=False)
        factory.direct(subdealer, "reports.export", granted=True)

        assert engine.list_granted_capabilities(subdealer.id) == ["reports.export", "vouchers.read"]

    def test_inactive_principal_holds_nothing(self, engine, factory):
        user = factory.user("off@demo.com", active=False)
        factory.direct(user, "reports.export")

        assert engine.list_granted_capabilities(user.id) == []

    def test_errors_propagate(self, engine, clock):
        with pytest.raises(UnknownPrincipal):
            engine.list_granted_capabilities(12345)
        with pytest.raises(InvalidInput):
            engine.list_granted_capabilities("nobody")
        with pytest.raises(StoreUnavailable):
            DecisionEngine(AuthorizationStore(broken_session_factory(), clock=clock)).list_granted_capabilities(1)


class TestExplain:

    def test_role_grant_explanation(self, engine, subdealer):
        explanation = engine.explain(subdealer.id, "vouchers.read")

        assert explanation["allowed"] is True
        assert explanation["reason"] == "role_granted"
        assert explanation["principal_id"] == subdealer.id
        assert explanation["active"] is True
        assert explanation["primary_role"] == "SUBDEALER"
        assert explanation["role_level"] == 3
        assert explanation["grant"] == {"granted": True, "source": "role"}
        assert explanation["capability_in_catalog"] is True

    def test_not_granted_has_no_grant_entry(self, engine, subdealer):
        explanation = engine.explain(subdealer.id, "users.create")

        assert explanation["reason"] == "not_granted"
        assert explanation["grant"] is None
        assert explanation["capability_in_catalog"] is True

    def test_unknown_capability_is_reported_as_outside_catalog(self, engine, subdealer):
        explanation = engine.explain(subdealer.id, "rockets.launch")

        assert explanation["detail"] == "unknown_capability"
        assert explanation["capability_in_catalog"] is False
        assert explanation["primary_role"] == "SUBDEALER"

    def test_unknown_principal_stops_early(self, engine):
        explanation = engine.explain("ghost@demo.com", "users.read")

        assert explanation["allowed"] is False
        assert explanation["detail"] == "unknown_principal"
        assert explanation["principal_id"] is None


class TestCachedDecisions:

    @pytest.fixture
    def cache(self, clock):
        return InMemoryPermissionCache(ttl_seconds=300, clock=clock)

    @pytest.fixture
    def cached_engine(self, store, cache):
        return DecisionEngine(store, cache=cache)

    def test_repeat_checks_hit_the_cache(self, cached_engine, cache, subdealer):
        cached_engine.decide(subdealer.id, "vouchers.read")
        cached_engine.decide(subdealer.id, "customers.read")

        assert cache.stats()["hits"] == 1
        assert cached_engine.cache is cache

    def test_invalidation_makes_changes_visible(self, cached_engine, cache, factory, subdealer):
        assert cached_engine.decide(subdealer.id, "vouchers.read").allowed is True

        factory.direct(subdealer, "vouchers.read", granted=False)
        cache.direct_grant_changed(subdealer.id)

        assert cached_engine.decide(subdealer.id, "vouchers.read").reason is DecisionReason.DIRECT_DENIED

    def test_cached_grant_does_not_outlive_its_expiry(self, cached_engine, factory, clock):
        user = factory.user("short@demo.com")
        factory.direct(user, "reports.export", expires_at=clock.now + timedelta(seconds=30))

        assert cached_engine.decide(user.id, "reports.export").allowed is True
        clock.advance(seconds=31)
        assert cached_engine.decide(user.id, "reports.export").allowed is False

    def test_inactive_principal_is_not_cached(self, cached_engine, cache, factory):
        user = factory.user("off@demo.com", active=False)

        cached_engine.decide(user.id, "users.read")

        assert len(cache) == 0

    @pytest.mark.parametrize("use_cache", [False, True])
    def test_repeated_decisions_agree(self, engine, cached_engine, subdealer, use_cache):
        engine = cached_engine if use_cache else engine

        for capability in ("vouchers.read", "users.create", "nope.missing"):
            assert engine.decide(subdealer.id, capability) == engine.decide(subdealer.id, capability)

    def test_deactivation_wins_over_a_cached_grant_set(self, cached_engine, cache, factory, subdealer):
        assert cached_engine.decide(subdealer.id, "vouchers.read").allowed is True
        assert len(cache) == 1
        before = cache.stats()

        # Committed without notifying the cache.
        subdealer.is_active = False
        factory.db.commit()

        assert cached_engine.decide(subdealer.id, "vouchers.read") == Decision(
            False, DecisionReason.INACTIVE_PRINCIPAL
        )
        assert cache.stats() == before
        assert len(cache) == 1


class TestInputNormalization:

    def test_numeric_strings_become_ids(self):
        assert normalize_principal_identifier(" 42 ") == 42

    def test_emails_are_lower_cased(self):
        assert normalize_principal_identifier(" Owner@Demo.COM ") == "owner@demo.com"

    def test_capability_validation_keeps_case(self):
        assert validate_capability_name("Reports.Export") == "Reports.Export"

    def test_capability_with_dashes_and_underscores(self):
        assert validate_capability_name("dashboard.admin-panel.read_all") == "dashboard.admin-panel.read_all"
