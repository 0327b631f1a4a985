"""Grant aggregation: role grants merged with direct per-user overrides."""

import logging
from datetime import datetime
from typing import Dict, Optional

from authz.services.grant_set import GrantEntry, GrantSet, GrantSource
from authz.services.permission_cache import PermissionCache
from authz.services.store import AuthorizationStore, PrincipalRecord

logger = logging.getLogger("authz")


class GrantAggregator:
    """Builds the effective capability mapping for a principal.

    Resolution:
    1. Inactive principals get an empty set; the cache is not consulted.
    2. Every non-expired role assignment (primary or not) contributes the
       system-defined capabilities its role grants with ``granted = true``.
       A role's ``granted = false`` row contributes nothing, so one role can
       never cancel another role's grant.
    3. Every non-expired direct grant is recorded, grant or denial.
    4. Direct entries override role entries for the same capability.
    """

    def __init__(self, store: AuthorizationStore, cache: Optional[PermissionCache] = None):
        self.store = store
        self.cache = cache

    def aggregate(self, principal: PrincipalRecord) -> GrantSet:
        """Return the effective grants for an already-loaded principal.

        Raises:
            StoreUnavailable: If any store query fails.
        """
        now = self.store.now()
        if not principal.is_active:
            return GrantSet.empty(now)

        token = None
        if self.cache is not None:
            cached = self.cache.get(principal.id)
            if cached is not None:
                return cached
            # Captured before reading so an invalidation during the read wins.
            token = self.cache.token(principal.id)

        grant_set = self._compute(principal.id, now)

        if self.cache is not None and token is not None:
            self.cache.put(principal.id, token, grant_set)
        return grant_set

    def _compute(self, principal_id: int, now: datetime) -> GrantSet:
        assignments = self.store.role_assignments(principal_id)
        role_ids = sorted({a.role_id for a in assignments})

        entries: Dict[str, GrantEntry] = {}
        for name in self.store.role_grants(role_ids):
            entries[name] = GrantEntry(granted=True, source=GrantSource.ROLE)

        direct = self.store.direct_grants(principal_id)
        for grant in direct:
            entries[grant.capability] = GrantEntry(granted=grant.granted, source=GrantSource.DIRECT)

        expiries = [a.expires_at for a in assignments if a.expires_at]
        expiries += [g.expires_at for g in direct if g.expires_at]

        logger.debug(
            "Aggregated %d grants for principal %s (%d roles, %d direct)",
            len(entries), principal_id, len(role_ids), len(direct),
        )
        return GrantSet(entries, computed_at=now, valid_until=min(expiries, default=None))
