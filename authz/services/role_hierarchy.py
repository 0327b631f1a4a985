"""Role hierarchy: primary role level lookup and level-based eligibility.

Levels run the "wrong" way round: level 1 is the most privileged role, so
"at least as privileged as level N" means ``level <= N``.
"""

from dataclasses import dataclass
from typing import Union

from authz.services.store import AuthorizationStore


# Seeded role ladder
OWNER_LEVEL = 1
ADMIN_LEVEL = 2
SUBDEALER_LEVEL = 3
CUSTOMER_LEVEL = 4


class NoRole:
    """Sentinel for a principal without a primary, non-expired role."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_ROLE"

    def __bool__(self) -> bool:
        return False


NO_ROLE = NoRole()


@dataclass(frozen=True)
class RoleLevel:
    role_id: int
    role_name: str
    level: int


PrimaryRole = Union[RoleLevel, NoRole]


def level_satisfies(required_max_level: int, actual_level: Union[int, RoleLevel, NoRole]) -> bool:
    """True iff ``actual_level`` is a real level numerically <= ``required_max_level``."""
    if isinstance(actual_level, NoRole) or actual_level is None:
        return False
    if isinstance(actual_level, RoleLevel):
        actual_level = actual_level.level
    return actual_level <= required_max_level


class RoleHierarchyResolver:
    """Stateless lookup of a principal's primary role level."""

    def __init__(self, store: AuthorizationStore):
        self.store = store

    def primary_level(self, principal_id: int) -> PrimaryRole:
        """Level of the principal's primary, non-expired role, or ``NO_ROLE``.

        Raises:
            StoreUnavailable: If the store query fails.
        """
        assignment = self.store.primary_role(principal_id)
        if assignment is None:
            return NO_ROLE
        return RoleLevel(
            role_id=assignment.role_id,
            role_name=assignment.role_name,
            level=assignment.level,
        )

    def principal_satisfies(self, principal_id: int, required_max_level: int) -> bool:
        return level_satisfies(required_max_level, self.primary_level(principal_id))
