"""Forwarding target parsing and intent resolution."""

import re
from dataclasses import dataclass
from typing import Tuple

from ..constants import PROTOCOLS
from ..errors import InvalidPort, InvalidProtocol, InvalidTargetFormat
from ..utils import validate_port

_BRACKETED = re.compile(r'^\[(?P<host>[^\[\]]+)\]:(?P<port>[^:\]]*)$')


@dataclass(frozen=True)
class ParsedEndpoint:
    """Host, port and address family of a forwarding destination."""
    host: str
    port: int
    family: str  # 'v4' or 'v6'


@dataclass(frozen=True)
class ForwardingIntent:
    """Resolved instruction to redirect a local port."""
    local_port: int
    protocols: Tuple[str, ...]
    dest_host: str
    dest_port: int
    address_family: str
    raw_target: str = ""

    @property
    def destination(self) -> str:
        """Destination as host:port, bracketing IPv6 hosts."""
        if self.address_family == "v6":
            return f"[{self.dest_host}]:{self.dest_port}"
        return f"{self.dest_host}:{self.dest_port}"


def parse_port(value: str) -> int:
    """Parse a port number, raising InvalidPort."""
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        raise InvalidPort(f"Invalid port: {value!r}")
    port = int(value)
    if not validate_port(port):
        raise InvalidPort(f"Port out of range: {port}")
    return port


def parse_endpoint(remainder: str) -> ParsedEndpoint:
    """
    Parse host:port, [v6-host]:port or an unbracketed v6-host:port.

    No DNS lookup is done; hostnames are kept as literals.
    """
    remainder = remainder.strip()

    match = _BRACKETED.match(remainder)
    if match:
        host = match.group('host').strip()
        if not host:
            raise InvalidTargetFormat(f"Missing host in {remainder!r}")
        return ParsedEndpoint(host=host, port=parse_port(match.group('port')), family="v6")

    if remainder.startswith('['):
        raise InvalidTargetFormat(f"Expected [host]:port, got {remainder!r}")

    host, sep, port = remainder.rpartition(':')
    if not sep:
        raise InvalidTargetFormat(f"Missing port in {remainder!r}")
    if not host:
        raise InvalidTargetFormat(f"Missing host in {remainder!r}")

    family = "v6" if ':' in host else "v4"
    return ParsedEndpoint(host=host, port=parse_port(port), family=family)


def split_protocol(raw_target: str) -> Tuple[Tuple[str, ...], str]:
    """Split an optional proto:// prefix off a target."""
    proto, sep, remainder = raw_target.partition('://')
    if not sep:
        return PROTOCOLS, raw_target

    proto = proto.strip().lower()
    if proto not in PROTOCOLS:
        raise InvalidProtocol(f"Invalid protocol: {proto!r} (expected tcp or udp)")
    return (proto,), remainder


def resolve_intent(local_port, raw_target: str) -> ForwardingIntent:
    """
    Resolve a configuration entry into a ForwardingIntent.

    Args:
        local_port: Local port as written in the config (str or int)
        raw_target: Right-hand side of the config line

    Returns:
        ForwardingIntent

    Raises:
        InvalidTargetFormat: or one of its subclasses
    """
    port = parse_port(str(local_port))
    if not raw_target or not raw_target.strip():
        raise InvalidTargetFormat("Empty target")

    protocols, remainder = split_protocol(raw_target.strip())
    endpoint = parse_endpoint(remainder)

    return ForwardingIntent(
        local_port=port,
        protocols=protocols,
        dest_host=endpoint.host,
        dest_port=endpoint.port,
        address_family=endpoint.family,
        raw_target=raw_target,
    )
