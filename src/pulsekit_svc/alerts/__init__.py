"""Alerting - decoupled rule evaluation for ingested events."""

from .dispatcher import AlertDispatcher
from .rules import AlertRule, ConditionType, InMemoryRuleStore, RuleEvaluator, RuleStore
from .webhook import WebhookNotifier

__all__ = [
    "AlertDispatcher",
    "AlertRule",
    "ConditionType",
    "InMemoryRuleStore",
    "RuleEvaluator",
    "RuleStore",
    "WebhookNotifier",
]
