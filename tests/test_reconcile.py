"""Tests for the rule reconciler."""

import pytest

from portforward.config import ForwardingEntry, read_forward_config
from portforward.firewall.intent import resolve_intent
from portforward.firewall.reconcile import (
    ANY_PROTOCOL,
    INSTALL,
    REMOVE,
    FailureReason,
    Reconciler,
    sort_entries,
)
from portforward.firewall.rules import derive_rules

from .conftest import MemoryRuleStore


def entries(*pairs):
    return [ForwardingEntry(port, target) for port, target in pairs]


def never_bound(port: int) -> bool:
    return False


@pytest.fixture
def reconciler(store, context):
    return Reconciler(store, context, port_checker=never_bound)


class TestInstall:

    def test_installs_dnat_and_snat_per_protocol(self, reconciler, store) -> None:
        result = reconciler.install(entries(("8080", "10.0.0.5:80")))
        assert result.succeeded == {"8080/tcp": "10.0.0.5:80", "8080/udp": "10.0.0.5:80"}
        assert result.failed == {}
        assert len(store.rules) == 4
        assert {r.chain for r in store.rules} == {"PREROUTING", "POSTROUTING"}

    def test_protocol_default_expansion(self, reconciler) -> None:
        result = reconciler.install(entries(("8080", "10.0.0.5:80")))
        assert sorted(r.protocol for r in result.records) == ["tcp", "udp"]

    def test_single_protocol(self, reconciler, store) -> None:
        result = reconciler.install(entries(("8088", "tcp://1.2.3.4:5000")))
        assert list(result.succeeded) == ["8088/tcp"]
        assert all("tcp" in r.match for r in store.rules)

    def test_install_is_idempotent(self, reconciler, store) -> None:
        config = entries(("8080", "10.0.0.5:80"), ("9090", "[2001:db8::1]:6000"))
        reconciler.install(config)
        before = store.snapshot()
        mutations_before = len(store.mutations)

        second = reconciler.install(config)

        assert store.snapshot() == before
        assert second.failed == {}
        assert all(r.ok and r.changed == 0 for r in second.records)
        assert len(store.mutations) == mutations_before

    def test_respelled_port_installs_one_forward(self, reconciler, store, write_config) -> None:
        path = write_config("8088=tcp://1.1.1.1:80\n08088=tcp://2.2.2.2:80\n")
        result = reconciler.install(read_forward_config(path))

        assert result.succeeded == {"8088/tcp": "tcp://2.2.2.2:80"}
        dnat = [r for r in store.rules if r.kind == "dnat"]
        assert len(dnat) == 1
        assert dnat[0].match[-1] == "2.2.2.2:80"

    def test_existing_rule_not_reinserted(self, store, context) -> None:
        intent = resolve_intent("8088", "tcp://1.2.3.4:5000")
        dnat, snat = derive_rules(intent, "tcp", context)
        store.rules.append(dnat)

        result = Reconciler(store, context, port_checker=never_bound).install(
            entries(("8088", "tcp://1.2.3.4:5000")))

        assert result.records[0].changed == 1
        assert store.mutations == [("insert", snat)]

    def test_port_busy_gates_whole_entry(self, store, context) -> None:
        reconciler = Reconciler(store, context, port_checker=lambda port: port == 8898)
        result = reconciler.install(entries(("8898", "tcp://13.17.1.12:8898"),
                                            ("8899", "udp://13.17.1.12:8899")))

        assert result.failed == {"8898/tcp": "tcp://13.17.1.12:8898"}
        assert result.failures[0].reason is FailureReason.PORT_IN_USE
        assert result.succeeded == {"8899/udp": "udp://13.17.1.12:8899"}
        assert all("8898" not in rule.match for _, rule in store.calls)

    def test_port_busy_fails_every_protocol(self, store, context) -> None:
        reconciler = Reconciler(store, context, port_checker=lambda port: True)
        result = reconciler.install(entries(("53", "10.0.0.53:53")))
        assert set(result.failed) == {"53/tcp", "53/udp"}
        assert store.calls == []

    def test_port_checked_once_per_entry(self, store, context) -> None:
        checked = []
        reconciler = Reconciler(store, context, port_checker=lambda p: checked.append(p) or False)
        reconciler.install(entries(("8080", "10.0.0.5:80")))
        assert checked == [8080]

    def test_malformed_entry_isolated(self, reconciler, store) -> None:
        result = reconciler.install(entries(("8080", "10.0.0.5"), ("8081", "tcp://10.0.0.5:81")))

        assert result.succeeded == {"8081/tcp": "tcp://10.0.0.5:81"}
        assert result.failed == {f"8080/{ANY_PROTOCOL}": "10.0.0.5"}
        assert result.failures[0].reason is FailureReason.INVALID_TARGET
        assert len(store.rules) == 2

    def test_invalid_local_port_isolated(self, reconciler) -> None:
        result = reconciler.install(entries(("http", "10.0.0.5:80")))
        assert result.failed == {"http/any": "10.0.0.5:80"}

    def test_store_failure_isolated_to_pair(self, context) -> None:
        store = MemoryRuleStore(
            fail_on=lambda action, rule: action == "insert" and "udp" in rule.match)
        result = Reconciler(store, context, port_checker=never_bound).install(
            entries(("8080", "bad-host:80")))

        assert list(result.succeeded) == ["8080/tcp"]
        assert list(result.failed) == ["8080/udp"]
        failure = result.failures[0]
        assert failure.reason is FailureReason.RULE_STORE_ERROR
        assert "host/network not found" in failure.detail

    def test_first_failure_stops_pair(self, context) -> None:
        store = MemoryRuleStore(fail_on=lambda action, rule: action == "insert" and rule.kind == "dnat")
        Reconciler(store, context, port_checker=never_bound).install(
            entries(("8088", "tcp://1.2.3.4:5000")))
        assert [action for action, _ in store.mutations] == ["insert"]
        assert store.rules == []

    def test_ipv6_intent(self, reconciler, store) -> None:
        result = reconciler.install(entries(("9090", "[2001:db8::1]:6000")))
        assert set(result.succeeded) == {"9090/tcp", "9090/udp"}
        assert {r.family for r in store.rules} == {"v6"}

    def test_ipv6_without_address_fails_only_v6(self, store, v4_only_context) -> None:
        reconciler = Reconciler(store, v4_only_context, port_checker=never_bound)
        result = reconciler.install(entries(("9090", "tcp://[2001:db8::1]:6000"),
                                            ("8080", "tcp://10.0.0.5:80")))
        assert result.succeeded == {"8080/tcp": "tcp://10.0.0.5:80"}
        assert result.failures[0].reason is FailureReason.NO_IPV6_SOURCE
        assert {r.family for r in store.rules} == {"v4"}


class TestRemove:

    def test_remove_on_clean_store_succeeds(self, reconciler, store) -> None:
        result = reconciler.remove(entries(("8080", "10.0.0.5:80")))
        assert set(result.succeeded) == {"8080/tcp", "8080/udp"}
        assert store.mutations == []

    def test_remove_twice(self, reconciler, store) -> None:
        config = entries(("8080", "10.0.0.5:80"))
        reconciler.install(config)
        reconciler.remove(config)
        second = reconciler.remove(config)
        assert second.failed == {}
        assert store.rules == []

    def test_install_remove_inverse(self, store, context) -> None:
        unrelated = derive_rules(resolve_intent("22", "tcp://10.9.9.9:22"), "tcp", context)
        store.rules.extend(unrelated)
        before = store.snapshot()

        reconciler = Reconciler(store, context, port_checker=never_bound)
        config = entries(("8080", "10.0.0.5:80"), ("8088", "tcp://1.2.3.4:5000"),
                         ("9090", "[2001:db8::1]:6000"))
        reconciler.install(config)
        assert store.snapshot() != before
        reconciler.remove(config)

        assert store.snapshot() == before

    def test_remove_ignores_port_busy(self, store, context) -> None:
        reconciler = Reconciler(store, context, port_checker=lambda port: True)
        result = reconciler.remove(entries(("8080", "10.0.0.5:80")))
        assert result.failed == {}

    def test_remove_ipv6_without_address(self, store, context, v4_only_context) -> None:
        config = entries(("9090", "tcp://[2001:db8::1]:6000"))
        Reconciler(store, context, port_checker=never_bound).install(config)
        snat = [r for r in store.rules if r.kind == "snat"]

        result = Reconciler(store, v4_only_context, port_checker=never_bound).remove(config)

        assert result.succeeded == {"9090/tcp": "tcp://[2001:db8::1]:6000"}
        assert result.failed == {}
        assert store.rules == snat

    def test_remove_ipv6_without_address_clean_store(self, store, v4_only_context) -> None:
        reconciler = Reconciler(store, v4_only_context, port_checker=never_bound)
        result = reconciler.remove(entries(("9090", "[2001:db8::1]:6000")))
        assert set(result.succeeded) == {"9090/tcp", "9090/udp"}
        assert store.mutations == []

    def test_delete_failure_reported(self, context) -> None:
        store = MemoryRuleStore(fail_on=lambda action, rule: action == "delete")
        reconciler = Reconciler(store, context, port_checker=never_bound)
        reconciler.install(entries(("8088", "tcp://1.2.3.4:5000")))
        result = reconciler.remove(entries(("8088", "tcp://1.2.3.4:5000")))
        assert result.failed == {"8088/tcp": "tcp://1.2.3.4:5000"}
        assert len(store.rules) == 2


class DryRunMemoryStore(MemoryRuleStore):
    """Answers existence checks but never changes its rules."""

    dry_run = True

    def insert(self, rule) -> None:
        self.calls.append(("insert", rule))

    def delete(self, rule) -> None:
        self.calls.append(("delete", rule))


class TestDryRun:

    def test_install_logs_would_add(self, context, caplog) -> None:
        store = DryRunMemoryStore()
        reconciler = Reconciler(store, context, port_checker=never_bound)
        with caplog.at_level("INFO"):
            result = reconciler.install(entries(("8088", "tcp://1.2.3.4:5000")))

        assert result.dry_run is True
        assert result.records[0].changed == 2
        assert store.rules == []
        assert "Would add PREROUTING rule (IPv4)" in caplog.text
        assert "Adding" not in caplog.text

    def test_remove_logs_would_remove(self, context, caplog) -> None:
        intent = resolve_intent("8088", "tcp://1.2.3.4:5000")
        store = DryRunMemoryStore(rules=derive_rules(intent, "tcp", context))
        with caplog.at_level("INFO"):
            Reconciler(store, context, port_checker=never_bound).remove(
                entries(("8088", "tcp://1.2.3.4:5000")))

        assert len(store.rules) == 2
        assert "Would remove POSTROUTING rule (IPv4)" in caplog.text
        assert "Removed" not in caplog.text

    def test_live_store_result_is_not_dry_run(self, reconciler) -> None:
        assert reconciler.install([]).dry_run is False


class TestOrdering:

    def test_sort_entries_numeric(self) -> None:
        ordered = sort_entries(entries(("9000", "a:1"), ("x", "b:1"), ("80", "c:1"), ("443", "d:1")))
        assert [e.local_port for e in ordered] == ["80", "443", "9000", "x"]

    def test_report_independent_of_input_order(self, context) -> None:
        config = entries(("9000", "10.0.0.1:1"), ("80", "10.0.0.2:2"), ("443", "tcp://10.0.0.3:3"))
        first = Reconciler(MemoryRuleStore(), context, port_checker=never_bound).install(config)
        second = Reconciler(MemoryRuleStore(), context, port_checker=never_bound).install(
            list(reversed(config)))
        assert list(first.succeeded.items()) == list(second.succeeded.items())
        assert list(first.succeeded)[0] == "80/tcp"

    def test_unknown_mode(self, reconciler) -> None:
        with pytest.raises(ValueError):
            reconciler.run([], "sideways")

    def test_modes(self, reconciler) -> None:
        assert reconciler.install([]).mode == INSTALL
        assert reconciler.remove([]).mode == REMOVE
