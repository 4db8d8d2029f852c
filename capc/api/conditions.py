"""Condition ledger for resource status.

Conditions are kept in a mapping keyed by type; the ordered list form only
exists at the serialization boundary (``to_list`` / ``from_list``).

``last_transition_time`` moves only when a condition's status changes.
Re-setting the same status with a different reason or message keeps the
original timestamp, so repeated reconciles of an unchanged world leave the
ledger identical.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

type Clock = Callable[[], datetime]

READY = "Ready"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def format_time(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(raw: str) -> datetime:
    ts = datetime.fromisoformat(raw)
    return (ts if ts.tzinfo else ts.replace(tzinfo=UTC)).replace(microsecond=0)


class ConditionStatus(StrEnum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class Condition:
    type: str
    status: ConditionStatus
    reason: str
    message: str
    last_transition_time: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_time(self.last_transition_time),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Condition:
        return cls(
            type=raw["type"],
            status=ConditionStatus(raw.get("status", "Unknown")),
            reason=raw.get("reason", ""),
            message=raw.get("message", ""),
            last_transition_time=parse_time(raw["lastTransitionTime"]),
        )


class ConditionSet:
    """At most one condition per type, with stable transition times.

    Args:
        conditions: Initial conditions; later entries win on duplicate types.
        clock: Source of timestamps. Values are truncated to whole seconds.
    """

    __slots__ = ("_items", "clock")

    def __init__(self, conditions: Iterable[Condition] = (), *, clock: Clock = utcnow) -> None:
        self._items: dict[str, Condition] = {c.type: c for c in conditions}
        self.clock = clock

    def set(self, type: str, status: ConditionStatus, reason: str, message: str = "") -> bool:
        """Upsert a condition. Returns True when anything changed."""
        current = self._items.get(type)
        if current is not None and current.status == status:
            if current.reason == reason and current.message == message:
                return False
            self._items[type] = replace(current, reason=reason, message=message)
            return True
        self._items[type] = Condition(
            type=type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=self.clock().replace(microsecond=0),
        )
        return True

    def mark_true(self, type: str, reason: str, message: str = "") -> bool:
        return self.set(type, ConditionStatus.TRUE, reason, message)

    def mark_false(self, type: str, reason: str, message: str = "") -> bool:
        return self.set(type, ConditionStatus.FALSE, reason, message)

    def mark_unknown(self, type: str, reason: str, message: str = "") -> bool:
        return self.set(type, ConditionStatus.UNKNOWN, reason, message)

    def get(self, type: str) -> Condition | None:
        return self._items.get(type)

    def is_true(self, type: str) -> bool:
        c = self._items.get(type)
        return c is not None and c.status == ConditionStatus.TRUE

    def is_false(self, type: str) -> bool:
        c = self._items.get(type)
        return c is not None and c.status == ConditionStatus.FALSE

    def reason(self, type: str) -> str | None:
        c = self._items.get(type)
        return c.reason if c is not None else None

    def delete(self, type: str) -> bool:
        return self._items.pop(type, None) is not None

    def summary(self, required: Iterable[str]) -> bool:
        """AND over ``required`` only; a missing condition counts as not ready."""
        return all(self.is_true(t) for t in required)

    def mark_summary(self, required: Iterable[str], *, reason: str = "Available") -> bool:
        """Derive the top-level Ready condition from ``required``.

        When not ready, Ready mirrors the first unmet condition's reason and
        message (or ``<type>NotReported`` if it was never set).
        """
        required = tuple(required)
        for t in required:
            c = self._items.get(t)
            if c is None:
                return self.mark_false(READY, f"{t}NotReported")
            if c.status != ConditionStatus.TRUE:
                return self.set(READY, c.status, c.reason, c.message)
        return self.mark_true(READY, reason)

    def __contains__(self, type: object) -> bool:
        return type in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._ordered())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConditionSet):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        inner = ", ".join(f"{c.type}={c.status.value}/{c.reason}" for c in self._ordered())
        return f"ConditionSet({inner})"

    def _ordered(self) -> list[Condition]:
        return sorted(self._items.values(), key=lambda c: (c.type != READY, c.type))

    # ─── Serialization ───────────────────────────────────────────────

    def to_list(self) -> list[dict[str, str]]:
        """Ready first, then by type name."""
        return [c.to_dict() for c in self._ordered()]

    @classmethod
    def from_list(cls, raw: Iterable[dict[str, Any]] | None, *, clock: Clock = utcnow) -> ConditionSet:
        return cls((Condition.from_dict(r) for r in raw or ()), clock=clock)
