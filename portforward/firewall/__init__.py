"""Forwarding intents, NAT rules and their reconciliation."""

from .intent import ForwardingIntent, ParsedEndpoint, parse_endpoint, resolve_intent
from .rules import RuleSpec, derive_rules
from .store import RuleStore, IptablesRuleStore, DryRunRuleStore
from .reconcile import (
    Reconciler, ReconcileResult, OutcomeRecord, FailureReason, INSTALL, REMOVE,
)
