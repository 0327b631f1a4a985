"""Decision engine, the single entry point for "may principal P do C?".

Every public check fails closed: typed store errors, bad input, unknown
principals or capabilities and unexpected exceptions all come back as
``Decision(allowed=False, reason=ERROR)``. Only the enumeration helper,
``list_granted_capabilities``, lets typed errors propagate, since it has no
boolean to fall back to.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from authz.core.exceptions import AuthzError, InvalidInput, StoreUnavailable, UnknownCapability
from authz.services.grant_aggregator import GrantAggregator
from authz.services.grant_set import GrantSet, GrantSource
from authz.services.permission_cache import PermissionCache
from authz.services.role_hierarchy import NoRole, RoleHierarchyResolver
from authz.services.store import AuthorizationStore, PrincipalId, PrincipalRecord

logger = logging.getLogger("authz")

CAPABILITY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*$")
MAX_CAPABILITY_NAME_LENGTH = 100
NUMERIC_ID_PATTERN = re.compile(r"^[0-9]+$")


class DecisionReason(str, Enum):
    ROLE_GRANTED = "role_granted"
    DIRECT_GRANTED = "direct_granted"
    DIRECT_DENIED = "direct_denied"
    NOT_GRANTED = "not_granted"
    INACTIVE_PRINCIPAL = "inactive_principal"
    ERROR = "error"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DecisionReason
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def normalize_principal_identifier(identifier: Any) -> PrincipalId:
    """Positive int ids pass through, numeric strings become ints, emails are lower-cased.

    Raises:
        InvalidInput: For empty, non-positive or otherwise malformed identifiers.
    """
    if isinstance(identifier, bool):
        raise InvalidInput("Principal identifier must be an id or an email")
    if isinstance(identifier, int):
        if identifier <= 0:
            raise InvalidInput(f"Invalid principal id {identifier}")
        return identifier
    if isinstance(identifier, str):
        value = identifier.strip()
        if NUMERIC_ID_PATTERN.match(value):
            return normalize_principal_identifier(int(value))
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise InvalidInput("Principal identifier must be an id or an email")
        return value.lower()
    raise InvalidInput("Principal identifier must be an id or an email")


def validate_capability_name(name: Any) -> str:
    """Capability names are matched exactly, so no case folding happens here.

    Raises:
        InvalidInput: If the name is empty, too long or not dotted word segments.
    """
    if not isinstance(name, str) or not name:
        raise InvalidInput("Capability name must be a non-empty string")
    if len(name) > MAX_CAPABILITY_NAME_LENGTH or not CAPABILITY_NAME_PATTERN.match(name):
        raise InvalidInput(f"Malformed capability name '{name}'")
    return name


class DecisionEngine:
    """Answers capability checks from the aggregated grant set.

    Args:
        store: Read-only authorization store client.
        aggregator: Grant aggregator; built over ``store`` and ``cache`` if omitted.
        resolver: Role hierarchy resolver; built over ``store`` if omitted.
        cache: Optional permission cache used when the aggregator is built here.
    """

    def __init__(
        self,
        store: AuthorizationStore,
        aggregator: Optional[GrantAggregator] = None,
        resolver: Optional[RoleHierarchyResolver] = None,
        cache: Optional[PermissionCache] = None,
    ):
        self.store = store
        self.aggregator = aggregator or GrantAggregator(store, cache=cache)
        self.resolver = resolver or RoleHierarchyResolver(store)

    @property
    def cache(self) -> Optional[PermissionCache]:
        return self.aggregator.cache

    def decide(self, principal_id: Any, capability_name: Any) -> Decision:
        """Decide one capability for one principal. Never raises."""
        try:
            capability = validate_capability_name(capability_name)
            principal, grant_set = self._load(principal_id)
            if grant_set is None:
                decision = Decision(False, DecisionReason.INACTIVE_PRINCIPAL)
            else:
                decision = self._decide_from(grant_set, capability)
        except AuthzError as e:
            decision = self._fail_closed(e, principal_id, capability_name)
        except Exception:
            logger.exception("Permission check crashed for '%s' on '%s'", principal_id, capability_name)
            decision = Decision(False, DecisionReason.ERROR, "internal_error")

        self._log_decision(principal_id, capability_name, decision)
        return decision

    def decide_many(self, principal_id: Any, capability_names: Iterable[Any]) -> Dict[Any, Decision]:
        """Decide several capabilities against a single aggregation. Never raises."""
        names = list(capability_names)
        try:
            principal, grant_set = self._load(principal_id)
        except AuthzError as e:
            decision = self._fail_closed(e, principal_id, names)
            return {name: decision for name in names}
        except Exception:
            logger.exception("Permission check crashed for '%s'", principal_id)
            decision = Decision(False, DecisionReason.ERROR, "internal_error")
            return {name: decision for name in names}

        if grant_set is None:
            return {name: Decision(False, DecisionReason.INACTIVE_PRINCIPAL) for name in names}

        results = {}
        for name in names:
            try:
                results[name] = self._decide_from(grant_set, validate_capability_name(name))
            except AuthzError as e:
                results[name] = self._fail_closed(e, principal_id, name)
            except Exception:
                logger.exception("Permission check crashed for '%s' on '%s'", principal_id, name)
                results[name] = Decision(False, DecisionReason.ERROR, "internal_error")
        return results

    def has_all(self, principal_id: Any, capability_names: Iterable[Any]) -> bool:
        """True only if every listed capability is allowed; an empty list is denied."""
        decisions = self.decide_many(principal_id, capability_names)
        return bool(decisions) and all(d.allowed for d in decisions.values())

    def has_any(self, principal_id: Any, capability_names: Iterable[Any]) -> bool:
        decisions = self.decide_many(principal_id, capability_names)
        return any(d.allowed for d in decisions.values())

    def has_level(self, principal_id: Any, required_max_level: int) -> bool:
        """Primary role at least as privileged as ``required_max_level``. Fails closed."""
        try:
            principal = self.store.find_principal(normalize_principal_identifier(principal_id))
            if not principal.is_active:
                return False
            return self.resolver.principal_satisfies(principal.id, required_max_level)
        except AuthzError as e:
            logger.warning("Level check for '%s' failed closed: %s", principal_id, e.message)
            return False
        except Exception:
            logger.exception("Level check crashed for '%s'", principal_id)
            return False

    def list_granted_capabilities(self, principal_id: Any) -> List[str]:
        """Sorted names of every capability the principal currently holds.

        Raises:
            InvalidInput, UnknownPrincipal, StoreUnavailable
        """
        principal, grant_set = self._load(principal_id)
        if grant_set is None:
            return []
        return grant_set.granted_names()

    def explain(self, principal_id: Any, capability_name: Any) -> Dict[str, Any]:
        """Decision plus the facts behind it, for audit and debugging output.

        ``grant`` is None when neither a role nor a direct grant mentions the
        capability, which is reported separately from an explicit denial.
        """
        decision = self.decide(principal_id, capability_name)
        explanation: Dict[str, Any] = {
            "principal": principal_id,
            "capability": capability_name,
            "allowed": decision.allowed,
            "reason": decision.reason.value,
            "detail": decision.detail,
            "principal_id": None,
            "active": None,
            "primary_role": None,
            "role_level": None,
            "grant": None,
            "capability_in_catalog": None,
        }
        if decision.reason is DecisionReason.ERROR and decision.detail != "unknown_capability":
            return explanation

        try:
            principal, grant_set = self._load(principal_id)
            explanation["principal_id"] = principal.id
            explanation["active"] = principal.is_active

            primary = self.resolver.primary_level(principal.id)
            if not isinstance(primary, NoRole):
                explanation["primary_role"] = primary.role_name
                explanation["role_level"] = primary.level

            entry = grant_set.lookup(capability_name) if grant_set is not None else None
            if entry is not None:
                explanation["grant"] = {"granted": entry.granted, "source": entry.source.value}
                explanation["capability_in_catalog"] = True
            else:
                explanation["capability_in_catalog"] = self.store.capability_exists(capability_name)
        except AuthzError as e:
            explanation["detail"] = explanation["detail"] or e.code
        return explanation

    def _load(self, principal_id: Any) -> Tuple[PrincipalRecord, Optional[GrantSet]]:
        """Principal plus its grant set; the set is None for inactive principals."""
        principal = self.store.find_principal(normalize_principal_identifier(principal_id))
        if not principal.is_active:
            return principal, None
        return principal, self.aggregator.aggregate(principal)

    def _decide_from(self, grant_set: GrantSet, capability: str) -> Decision:
        entry = grant_set.lookup(capability)
        if entry is None:
            if not self.store.capability_exists(capability):
                raise UnknownCapability(f"Capability '{capability}' is not in the catalog")
            return Decision(False, DecisionReason.NOT_GRANTED)
        if entry.source is GrantSource.DIRECT:
            if entry.granted:
                return Decision(True, DecisionReason.DIRECT_GRANTED)
            return Decision(False, DecisionReason.DIRECT_DENIED)
        return Decision(True, DecisionReason.ROLE_GRANTED)

    def _fail_closed(self, error: AuthzError, principal_id: Any, capability: Any) -> Decision:
        if isinstance(error, UnknownCapability):
            logger.warning("Unknown capability checked for '%s': %s", principal_id, error.message)
        elif isinstance(error, StoreUnavailable):
            logger.error("Permission check for '%s' on '%s' failed closed: %s", principal_id, capability, error.message)
        else:
            logger.warning("Permission check for '%s' on '%s' failed closed: %s", principal_id, capability, error.message)
        return Decision(False, DecisionReason.ERROR, error.code)

    def _log_decision(self, principal_id: Any, capability: Any, decision: Decision) -> None:
        if decision.allowed:
            logger.debug("Permission granted: '%s' for '%s' (%s)", capability, principal_id, decision.reason.value)
        else:
            logger.debug("Permission denied: '%s' for '%s' (%s)", capability, principal_id, decision.reason.value)
