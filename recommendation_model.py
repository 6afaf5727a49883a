#!/usr/bin/env python3
"""
Data model for Recommendation objects and their status conditions.

Field names in to_dict/from_dict are the stored wire format of the
Recommendation custom resource and must stay as they are.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

CONDITION_READY = "Ready"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

COMPLETION_ONCE = "Once"
COMPLETION_PERIODICAL = "Periodical"


def now_utc() -> datetime:
    """Current time at the one-second precision timestamps are stored with."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TargetRef:
    kind: str
    name: str
    namespace: str = ""
    api_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        if self.api_version:
            data["apiVersion"] = self.api_version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetRef":
        return cls(
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            api_version=data.get("apiVersion", ""),
        )


@dataclass
class CompletionStrategy:
    strategy_type: str = COMPLETION_ONCE
    period_seconds: Optional[int] = None

    @property
    def is_periodical(self) -> bool:
        return self.strategy_type == COMPLETION_PERIODICAL

    def validate(self) -> Optional[str]:
        """Return a message describing why the strategy is unusable, or None."""
        if self.strategy_type not in (COMPLETION_ONCE, COMPLETION_PERIODICAL):
            return f"unknown completion strategy type {self.strategy_type!r}"
        if self.is_periodical:
            if self.period_seconds is None:
                return "periodical completion strategy requires periodSeconds"
            if self.period_seconds <= 0:
                return f"periodSeconds must be positive, got {self.period_seconds}"
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"completionStrategyType": self.strategy_type}
        if self.period_seconds is not None:
            data["periodSeconds"] = self.period_seconds
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompletionStrategy":
        data = data or {}
        period = data.get("periodSeconds")
        return cls(
            strategy_type=data.get("completionStrategyType") or COMPLETION_ONCE,
            period_seconds=int(period) if period is not None else None,
        )


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_time(self.last_transition_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=data.get("status", CONDITION_UNKNOWN),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=parse_time(data.get("lastTransitionTime")),
        )


class ConditionSet:
    """Conditions keyed by type, kept in insertion order."""

    def __init__(self, conditions: Optional[List[Condition]] = None):
        self._conditions: List[Condition] = list(conditions or [])

    def upsert(self, condition_type: str, status: str, reason: str, message: str,
               now: Optional[datetime] = None) -> Condition:
        """
        Overwrite the condition of this type or append a new one. The
        transition time is refreshed on every write, even if status is unchanged.
        """
        timestamp = now or now_utc()
        for condition in self._conditions:
            if condition.type == condition_type:
                condition.status = status
                condition.reason = reason
                condition.message = message
                condition.last_transition_time = timestamp
                return condition

        condition = Condition(condition_type, status, reason, message, timestamp)
        self._conditions.append(condition)
        return condition

    def get(self, condition_type: str) -> Optional[Condition]:
        for condition in self._conditions:
            if condition.type == condition_type:
                return condition
        return None

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConditionSet):
            return NotImplemented
        return self._conditions == other._conditions

    def __repr__(self) -> str:
        return f"ConditionSet({self._conditions!r})"

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self._conditions]

    @classmethod
    def from_list(cls, items: Optional[List[Dict[str, Any]]]) -> "ConditionSet":
        return cls([Condition.from_dict(item) for item in items or []])


@dataclass
class RecommendationStatus:
    conditions: ConditionSet = field(default_factory=ConditionSet)
    last_update_time: Optional[datetime] = None
    recommended_value: str = ""

    def deep_copy(self) -> "RecommendationStatus":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"conditions": self.conditions.to_list()}
        if self.last_update_time is not None:
            data["lastUpdateTime"] = format_time(self.last_update_time)
        if self.recommended_value:
            data["recommendedValue"] = self.recommended_value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RecommendationStatus":
        data = data or {}
        return cls(
            conditions=ConditionSet.from_list(data.get("conditions")),
            last_update_time=parse_time(data.get("lastUpdateTime")),
            recommended_value=data.get("recommendedValue", ""),
        )


@dataclass
class Recommendation:
    name: str
    namespace: str
    target_ref: TargetRef
    completion_strategy: CompletionStrategy = field(default_factory=CompletionStrategy)
    recommendation_type: str = "Resource"
    status: RecommendationStatus = field(default_factory=RecommendationStatus)
    deletion_timestamp: Optional[datetime] = None
    resource_version: str = ""
    uid: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Stored object with the current status; unknown fields of raw are preserved."""
        data = copy.deepcopy(self.raw)
        metadata = data.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        data["status"] = self.status.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        metadata = data.get("metadata", {})
        spec = data.get("spec", {})
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            target_ref=TargetRef.from_dict(spec.get("targetRef", {})),
            completion_strategy=CompletionStrategy.from_dict(spec.get("completionStrategy")),
            recommendation_type=spec.get("type", "Resource"),
            status=RecommendationStatus.from_dict(data.get("status")),
            deletion_timestamp=parse_time(metadata.get("deletionTimestamp")),
            resource_version=metadata.get("resourceVersion", ""),
            uid=metadata.get("uid", ""),
            raw=copy.deepcopy(data),
        )
