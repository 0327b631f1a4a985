"""Immutable aggregated grant mapping for one principal."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional


class GrantSource(str, Enum):
    ROLE = "role"
    DIRECT = "direct"


@dataclass(frozen=True)
class GrantEntry:
    granted: bool
    source: GrantSource


class GrantSet:
    """capability name -> GrantEntry, plus when it was computed and until when it holds.

    ``valid_until`` is the earliest future expiry among the role assignments
    and direct grants that were read, so a cached copy never outlives the
    rows it was built from. Instances are never mutated after construction.
    """

    __slots__ = ("_entries", "computed_at", "valid_until")

    def __init__(
        self,
        entries: Mapping[str, GrantEntry],
        computed_at: datetime,
        valid_until: Optional[datetime] = None,
    ):
        self._entries = MappingProxyType(dict(entries))
        self.computed_at = computed_at
        self.valid_until = valid_until

    @classmethod
    def empty(cls, computed_at: datetime) -> "GrantSet":
        return cls({}, computed_at)

    def lookup(self, capability: str) -> Optional[GrantEntry]:
        return self._entries.get(capability)

    def __contains__(self, capability: str) -> bool:
        return capability in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, GrantSet):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __repr__(self) -> str:
        return f"<GrantSet entries={len(self._entries)} computed_at={self.computed_at.isoformat()}>"

    @property
    def entries(self) -> Mapping[str, GrantEntry]:
        return self._entries

    def granted_names(self) -> List[str]:
        """Sorted names of every capability whose final value is granted."""
        return sorted(name for name, entry in self._entries.items() if entry.granted)

    def as_booleans(self) -> Dict[str, bool]:
        return {name: entry.granted for name, entry in self._entries.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": {
                name: [entry.granted, entry.source.value]
                for name, entry in self._entries.items()
            },
            "computed_at": self.computed_at.isoformat(),
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GrantSet":
        entries = {
            name: GrantEntry(granted=bool(granted), source=GrantSource(source))
            for name, (granted, source) in data["entries"].items()
        }
        valid_until = data.get("valid_until")
        return cls(
            entries,
            computed_at=datetime.fromisoformat(data["computed_at"]),
            valid_until=datetime.fromisoformat(valid_until) if valid_until else None,
        )
