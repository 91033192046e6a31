"""Key-value store abstraction with conditional writes and secondary indexes."""

from __future__ import annotations

import abc
import copy
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

# Reserved attribute holding ``{index_name: [partition, sort_key]}`` for an item.
INDEX_ATTRIBUTE = "_index"


class Condition(abc.ABC):
    """Precondition evaluated against the current item (``None`` if absent)."""

    @abc.abstractmethod
    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class ItemAbsent(Condition):
    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        return current is None


@dataclass(frozen=True)
class ItemExists(Condition):
    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        return current is not None


@dataclass(frozen=True)
class AttributeEquals(Condition):
    name: str
    value: Any

    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        return current is not None and current.get(self.name) == self.value


@dataclass(frozen=True)
class AttributeAtMost(Condition):
    """Numeric attribute is ``<= limit``; a missing attribute counts as 0."""

    name: str
    limit: float

    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        value = (current or {}).get(self.name) or 0
        return value <= self.limit


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: Tuple[Condition, ...]

    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        return any(c.holds(current) for c in self.conditions)


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: Tuple[Condition, ...]

    def holds(self, current: Optional[Mapping[str, Any]]) -> bool:
        return all(c.holds(current) for c in self.conditions)


def apply_update(
    current: Optional[Mapping[str, Any]],
    changes: Optional[Mapping[str, Any]] = None,
    increment: Optional[Mapping[str, float]] = None,
) -> Dict[str, Any]:
    """Return a new item with ``changes`` set and ``increment`` added."""
    item: Dict[str, Any] = copy.deepcopy(dict(current)) if current else {}
    for name, value in (changes or {}).items():
        item[name] = copy.deepcopy(value)
    for name, amount in (increment or {}).items():
        item[name] = (item.get(name) or 0) + amount
    return item


def index_entries(item: Mapping[str, Any]) -> Dict[str, Tuple[str, str]]:
    """Index name -> (partition, sort key) declared on ``item``."""
    raw = item.get(INDEX_ATTRIBUTE) or {}
    return {name: (str(pair[0]), str(pair[1])) for name, pair in raw.items()}


def public_view(item: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of ``item`` without store bookkeeping attributes."""
    if item is None:
        return None
    return {k: copy.deepcopy(v) for k, v in item.items() if k != INDEX_ATTRIBUTE}


class KeyValueStore(metaclass=abc.ABCMeta):
    """Abstract store used by every plangov service.

    Items are JSON-compatible dicts. Writes may carry a :class:`Condition`
    which is checked atomically with the write; a failed check raises
    :class:`~plangov.errors.ConditionFailed` and leaves the item untouched.
    """

    async def connect(self) -> None:
        """Open connections (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release connections (no-op by default)."""
        pass

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the item stored under ``key`` or ``None``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def put(
        self, key: str, item: Mapping[str, Any], condition: Optional[Condition] = None
    ) -> None:
        """Replace the item under ``key``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def update(
        self,
        key: str,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        increment: Optional[Mapping[str, float]] = None,
        condition: Optional[Condition] = None,
    ) -> Dict[str, Any]:
        """Set and/or atomically increment attributes, creating the item if absent.

        Returns the item as written.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def query(
        self,
        index: str,
        partition: str,
        *,
        prefix: str = "",
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> list[Dict[str, Any]]:
        """Items in ``index`` under ``partition`` whose sort key starts with ``prefix``."""
        raise NotImplementedError
