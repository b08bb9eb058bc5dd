"""Shared test fixtures for portforward tests."""

from collections import Counter
from typing import List, Tuple

import pytest

from portforward.errors import RuleStoreError
from portforward.firewall.rules import RuleSpec
from portforward.firewall.store import RuleStore
from portforward.system.network import NetworkContext


class MemoryRuleStore(RuleStore):
    """In-memory rule store with iptables -C/-A/-D semantics."""

    def __init__(self, rules=None, fail_on=None):
        self.rules: List[RuleSpec] = list(rules or [])
        self.fail_on = fail_on or (lambda action, rule: False)
        self.calls: List[Tuple[str, RuleSpec]] = []

    def _maybe_fail(self, action: str, rule: RuleSpec) -> None:
        if self.fail_on(action, rule):
            raise RuleStoreError(f"{action} refused", stderr="host/network not found")

    def exists(self, rule: RuleSpec) -> bool:
        self.calls.append(("check", rule))
        self._maybe_fail("check", rule)
        return rule in self.rules

    def insert(self, rule: RuleSpec) -> None:
        self.calls.append(("insert", rule))
        self._maybe_fail("insert", rule)
        self.rules.append(rule)

    def delete(self, rule: RuleSpec) -> None:
        self.calls.append(("delete", rule))
        self._maybe_fail("delete", rule)
        self.rules.remove(rule)

    @property
    def mutations(self) -> List[Tuple[str, RuleSpec]]:
        return [call for call in self.calls if call[0] != "check"]

    def snapshot(self) -> Counter:
        return Counter(self.rules)


@pytest.fixture
def context() -> NetworkContext:
    return NetworkContext(interface="eth0", ipv4_address="192.0.2.10",
                          ipv6_address="2001:db8::10")


@pytest.fixture
def v4_only_context() -> NetworkContext:
    return NetworkContext(interface="eth0", ipv4_address="192.0.2.10")


@pytest.fixture
def store() -> MemoryRuleStore:
    return MemoryRuleStore()


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str):
        path = tmp_path / "config.ini"
        path.write_text(text)
        return path
    return _write
