"""NAT rule derivation for forwarding intents."""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..constants import HOST_PREFIX, NAT_TABLE, POSTROUTING, PREROUTING
from ..system.network import NetworkContext
from .intent import ForwardingIntent


@dataclass(frozen=True)
class RuleSpec:
    """A single fully parameterized NAT rule."""
    family: str  # 'v4' or 'v6'
    table: str
    chain: str
    match: Tuple[str, ...]
    kind: str  # 'dnat' or 'snat'

    @property
    def description(self) -> str:
        return f"{self.chain} rule ({'IPv6' if self.family == 'v6' else 'IPv4'})"

    def to_iptables(self) -> str:
        """Render as an append command line."""
        binary = "ip6tables" if self.family == "v6" else "iptables"
        return " ".join([binary, "-t", self.table, "-A", self.chain, *self.match])


def dnat_rule(intent: ForwardingIntent, protocol: str) -> RuleSpec:
    """Rewrite destination of traffic arriving on the local port."""
    return RuleSpec(
        family=intent.address_family,
        table=NAT_TABLE,
        chain=PREROUTING,
        match=(
            "-p", protocol,
            "--dport", str(intent.local_port),
            "-j", "DNAT",
            "--to-destination", intent.destination,
        ),
        kind="dnat",
    )


def snat_rule(intent: ForwardingIntent, protocol: str, source: str) -> RuleSpec:
    """Rewrite source of forwarded traffic so replies come back through us."""
    prefix = HOST_PREFIX[intent.address_family]
    return RuleSpec(
        family=intent.address_family,
        table=NAT_TABLE,
        chain=POSTROUTING,
        match=(
            "-d", f"{intent.dest_host}/{prefix}",
            "-p", protocol,
            "--dport", str(intent.dest_port),
            "-j", "SNAT",
            "--to-source", source,
        ),
        kind="snat",
    )


def source_address(intent: ForwardingIntent, context: NetworkContext) -> Optional[str]:
    """Local address to use as SNAT source for an intent, if any."""
    if intent.address_family == "v6":
        return context.ipv6_address
    return context.ipv4_address


def derive_rules(intent: ForwardingIntent, protocol: str, context: NetworkContext) -> List[RuleSpec]:
    """
    Derive the DNAT and SNAT rules for one (intent, protocol) pair.

    The result depends only on the arguments, so deriving twice gives
    equal rules. Returns an empty list for an IPv6 intent when the host
    has no IPv6 address to translate to.
    """
    source = source_address(intent, context)
    if source is None:
        return []

    return [
        dnat_rule(intent, protocol),
        snat_rule(intent, protocol, source),
    ]
