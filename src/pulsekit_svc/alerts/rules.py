"""Alert rules and their evaluation against ingested events."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol

from ..events.store import EventStore
from ..events.types import EventLevel, StoredEvent


logger = logging.getLogger(__name__)


class ConditionType(str, Enum):
    """When a rule fires."""
    THRESHOLD = "threshold"          # N events of one fingerprint within a window
    NEW_ERROR = "new_error"          # first error/fatal occurrence of a fingerprint
    PATTERN_MATCH = "pattern_match"  # regex found in the message


_WINDOW_RE = re.compile(r"^(\d+)([smhd])$")
_WINDOW_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_window(window: str) -> timedelta:
    """Parse "30s", "5m", "1h" or "7d"."""
    match = _WINDOW_RE.match(window.strip())
    if not match:
        raise ValueError(f"Invalid window: {window!r}")
    amount, unit = match.groups()
    return timedelta(**{_WINDOW_UNITS[unit]: int(amount)})


@dataclass(frozen=True)
class AlertRule:
    """A project's alert rule and the webhook it notifies."""
    id: str
    project_id: str
    name: str
    condition_type: ConditionType
    webhook_url: str
    condition_config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRule:
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            name=data["name"],
            condition_type=ConditionType(data["condition_type"]),
            webhook_url=data["webhook_url"],
            condition_config=dict(data.get("condition_config") or {}),
            enabled=data.get("enabled", True),
        )


class RuleStore(ABC):
    """Source of alert rules."""

    @abstractmethod
    async def enabled_rules(self, project_id: str) -> list[AlertRule]:
        ...


class InMemoryRuleStore(RuleStore):
    """Thread-safe in-memory rule store, typically loaded from config."""

    def __init__(self, rules: list[AlertRule] | None = None) -> None:
        self._rules: dict[str, AlertRule] = {}
        self._lock = threading.RLock()
        for rule in rules or []:
            self.add(rule)

    @classmethod
    def from_config(cls, rules: list[dict[str, Any]]) -> InMemoryRuleStore:
        store = cls([AlertRule.from_dict(r) for r in rules])
        logger.info(f"Loaded {len(store)} alert rule(s)")
        return store

    def add(self, rule: AlertRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule

    def remove(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    async def enabled_rules(self, project_id: str) -> list[AlertRule]:
        with self._lock:
            return [
                r for r in self._rules.values()
                if r.project_id == project_id and r.enabled
            ]

    def __len__(self) -> int:
        return len(self._rules)


class Notifier(Protocol):
    async def notify(self, rule: AlertRule, event: StoredEvent) -> None:
        ...


@dataclass
class RuleEvaluator:
    """
    Matches an event against its project's enabled rules and notifies
    each rule that fires.

    Used as the AlertDispatcher's evaluator. A failing notification is
    logged and does not stop the other rules.
    """
    rules: RuleStore
    events: EventStore
    notifier: Notifier

    async def __call__(self, event: StoredEvent) -> None:
        await self.evaluate(event)

    async def evaluate(self, event: StoredEvent) -> list[AlertRule]:
        """Evaluate one event. Returns the rules that fired."""
        fired = []
        for rule in await self.rules.enabled_rules(event.project_id):
            if await self.matches(rule, event):
                fired.append(rule)

        if not fired:
            return fired

        results = await asyncio.gather(
            *(self.notifier.notify(rule, event) for rule in fired),
            return_exceptions=True,
        )
        for rule, result in zip(fired, results):
            if isinstance(result, Exception):
                logger.error(f"Alert '{rule.name}' notification failed for event {event.id}: {result}")
            else:
                logger.info(f"Alert '{rule.name}' fired for event {event.id}")
        return fired

    async def matches(self, rule: AlertRule, event: StoredEvent) -> bool:
        config = rule.condition_config
        if rule.condition_type == ConditionType.THRESHOLD:
            return await self._matches_threshold(event, config)
        if rule.condition_type == ConditionType.NEW_ERROR:
            return await self._matches_new_error(event)
        if rule.condition_type == ConditionType.PATTERN_MATCH:
            return self._matches_pattern(event, config)
        return False

    async def _matches_threshold(self, event: StoredEvent, config: dict[str, Any]) -> bool:
        count = int(config.get("count", 10))
        try:
            window = parse_window(str(config.get("window", "5m")))
        except ValueError as e:
            logger.warning(f"Threshold rule misconfigured: {e}")
            return False

        # Window on the server clock, counting only events persisted up to this one
        seen = await self.events.count(
            event.project_id,
            fingerprint=event.fingerprint,
            since=event.received_at - window,
            up_to_id=event.id,
        )
        return seen >= count

    async def _matches_new_error(self, event: StoredEvent) -> bool:
        if event.level not in (EventLevel.ERROR, EventLevel.FATAL):
            return False
        # The event itself is already stored; later events of a burst are not counted
        seen = await self.events.count(
            event.project_id,
            fingerprint=event.fingerprint,
            up_to_id=event.id,
        )
        return seen <= 1

    def _matches_pattern(self, event: StoredEvent, config: dict[str, Any]) -> bool:
        try:
            regex = re.compile(config.get("pattern", ""))
        except re.error:
            return False
        return regex.search(event.message or "") is not None
