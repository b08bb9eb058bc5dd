"""Converge live NAT rules to the configured forwards."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config import ForwardingEntry
from ..errors import InvalidTargetFormat, RuleStoreError
from ..system.network import NetworkContext
from ..system.ports import is_port_bound
from .intent import ForwardingIntent, resolve_intent
from .rules import RuleSpec, derive_rules, dnat_rule
from .store import RuleStore

logger = logging.getLogger(__name__)

INSTALL = "install"
REMOVE = "remove"

# Protocol label for entries that failed before a protocol was known
ANY_PROTOCOL = "any"


class FailureReason(str, Enum):
    INVALID_TARGET = "InvalidTarget"
    PORT_IN_USE = "PortInUse"
    NO_IPV6_SOURCE = "NoIPv6Source"
    RULE_STORE_ERROR = "RuleStoreError"


@dataclass(frozen=True)
class OutcomeRecord:
    """Result for one (local port, protocol) pair."""
    local_port: str
    protocol: str
    raw_target: str
    ok: bool
    reason: Optional[FailureReason] = None
    detail: str = ""
    changed: int = 0

    @property
    def key(self) -> str:
        return f"{self.local_port}/{self.protocol}"


def _sort_key(key: str) -> Tuple[int, int, str]:
    port, _, protocol = key.partition('/')
    if port.isdigit():
        return (0, int(port), protocol)
    return (1, 0, key)


@dataclass(frozen=True)
class ReconcileResult:
    """All outcome records of one pass."""
    mode: str
    records: Tuple[OutcomeRecord, ...] = ()
    dry_run: bool = False

    def _partition(self, ok: bool) -> Dict[str, str]:
        selected = {r.key: r.raw_target for r in self.records if r.ok is ok}
        return {k: selected[k] for k in sorted(selected, key=_sort_key)}

    @property
    def succeeded(self) -> Dict[str, str]:
        return self._partition(True)

    @property
    def failed(self) -> Dict[str, str]:
        return self._partition(False)

    @property
    def failures(self) -> List[OutcomeRecord]:
        return sorted((r for r in self.records if not r.ok), key=lambda r: _sort_key(r.key))


def sort_entries(entries: Iterable[ForwardingEntry]) -> List[ForwardingEntry]:
    """Order entries by numeric local port, malformed ports last."""
    return sorted(entries, key=lambda e: _sort_key(e.local_port))


class Reconciler:
    """
    Applies or removes the NAT rules implied by forwarding entries.

    Every rule is checked before it is changed, so repeating a pass
    leaves the store as it is. A failure only affects its own
    (port, protocol) pair; rules already applied stay in place.
    """

    def __init__(
        self,
        store: RuleStore,
        context: NetworkContext,
        port_checker: Optional[Callable[[int], bool]] = None,
    ):
        self.store = store
        self.context = context
        self.port_checker = port_checker or is_port_bound

    def install(self, entries: Iterable[ForwardingEntry]) -> ReconcileResult:
        return self.run(entries, INSTALL)

    def remove(self, entries: Iterable[ForwardingEntry]) -> ReconcileResult:
        return self.run(entries, REMOVE)

    def run(self, entries: Iterable[ForwardingEntry], mode: str) -> ReconcileResult:
        if mode not in (INSTALL, REMOVE):
            raise ValueError(f"Unknown mode: {mode}")

        records: List[OutcomeRecord] = []
        for entry in sort_entries(entries):
            records.extend(self._process_entry(entry, mode))
        return ReconcileResult(mode=mode, records=tuple(records), dry_run=self.store.dry_run)

    def _process_entry(self, entry: ForwardingEntry, mode: str) -> List[OutcomeRecord]:
        try:
            intent = resolve_intent(entry.local_port, entry.raw_target)
        except InvalidTargetFormat as e:
            logger.error(f"{entry.local_port} = {entry.raw_target}: {e}")
            return [OutcomeRecord(
                local_port=entry.local_port,
                protocol=ANY_PROTOCOL,
                raw_target=entry.raw_target,
                ok=False,
                reason=FailureReason.INVALID_TARGET,
                detail=str(e),
            )]

        label = "FORWARD" if mode == INSTALL else "CLEANUP"
        protocols = "/".join(p.upper() for p in intent.protocols)
        logger.info(f"{label} {protocols} {intent.local_port} -> {intent.destination}")

        if mode == INSTALL and self.port_checker(intent.local_port):
            logger.warning(f"  - Port {intent.local_port} is in use. Skipping.")
            return [
                self._failure(intent, protocol, FailureReason.PORT_IN_USE,
                              f"Local port {intent.local_port} is already bound")
                for protocol in intent.protocols
            ]

        return [self._process_pair(intent, protocol, mode) for protocol in intent.protocols]

    def _process_pair(self, intent: ForwardingIntent, protocol: str, mode: str) -> OutcomeRecord:
        rules = derive_rules(intent, protocol, self.context)
        if not rules and mode == REMOVE:
            # The SNAT rule names the local address, so only DNAT can be matched
            logger.warning(f"  - No IPv6 address on {self.context.interface}; "
                           f"removing only the PREROUTING rule for {protocol} {intent.local_port}")
            rules = [dnat_rule(intent, protocol)]
        elif not rules:
            logger.warning(f"  - No IPv6 address on {self.context.interface}; "
                           f"skipping {protocol} {intent.local_port}")
            return self._failure(intent, protocol, FailureReason.NO_IPV6_SOURCE,
                                 f"No global IPv6 address on {self.context.interface}")

        apply = self.ensure_present if mode == INSTALL else self.ensure_absent
        changed = 0
        try:
            for rule in rules:
                if apply(rule):
                    changed += 1
        except RuleStoreError as e:
            logger.error(f"  - {rule.description} failed: {e}")
            return self._failure(intent, protocol, FailureReason.RULE_STORE_ERROR, str(e))

        return OutcomeRecord(
            local_port=str(intent.local_port),
            protocol=protocol,
            raw_target=intent.raw_target,
            ok=True,
            changed=changed,
        )

    def _failure(self, intent: ForwardingIntent, protocol: str,
                 reason: FailureReason, detail: str) -> OutcomeRecord:
        return OutcomeRecord(
            local_port=str(intent.local_port),
            protocol=protocol,
            raw_target=intent.raw_target,
            ok=False,
            reason=reason,
            detail=detail,
        )

    def ensure_present(self, rule: RuleSpec) -> bool:
        """Append a rule unless it exists. Returns True if the store changed."""
        if self.store.exists(rule):
            logger.warning(f"  - {rule.description} already exists")
            return False
        verb = "Would add" if self.store.dry_run else "Adding"
        logger.info(f"  - {verb} {rule.description}")
        self.store.insert(rule)
        return True

    def ensure_absent(self, rule: RuleSpec) -> bool:
        """Delete a rule if it exists. Returns True if the store changed."""
        if not self.store.exists(rule):
            logger.warning(f"  - {rule.description} not found")
            return False
        self.store.delete(rule)
        verb = "Would remove" if self.store.dry_run else "Removed"
        logger.info(f"  - {verb} {rule.description}")
        return True
