"""Default interface and address discovery."""

import ipaddress
import logging
import socket
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional

import psutil

from ..constants import DEFAULT_TIMEOUT
from ..errors import NetworkProbeError
from ..utils import run

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkContext:
    """Outbound interface and the addresses used as SNAT source."""
    interface: str
    ipv4_address: str
    ipv6_address: Optional[str] = None


def parse_default_interface(output: str) -> Optional[str]:
    """Extract the device name from `ip route show default` output."""
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != "default":
            continue
        if "dev" in parts:
            idx = parts.index("dev")
            if idx + 1 < len(parts):
                return parts[idx + 1]
    return None


def get_default_interface(
    runner: Callable[..., subprocess.CompletedProcess] = run,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> Optional[str]:
    """Return the interface carrying the default route (IPv4 first, then IPv6)."""
    for family in ("-4", "-6"):
        try:
            result = runner(["ip", family, "route", "show", "default"], check=False, timeout=timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise NetworkProbeError(f"Cannot query routing table: {e}") from e
        if result.returncode == 0:
            iface = parse_default_interface(result.stdout)
            if iface:
                return iface
    return None


def _global_addresses(addrs, family: int) -> List[str]:
    found = []
    for addr in addrs:
        if addr.family != family:
            continue
        # link-local v6 addresses carry a %zone suffix
        text = addr.address.split('%')[0]
        try:
            ip = ipaddress.ip_address(text)
        except ValueError:
            continue
        if ip.is_loopback or ip.is_link_local or ip.is_multicast or ip.is_unspecified:
            continue
        found.append(text)
    return found


def get_interface_addresses(interface: str):
    """Return (first IPv4, first global IPv6) bound to an interface."""
    addrs = psutil.net_if_addrs().get(interface, [])
    ipv4 = _global_addresses(addrs, socket.AF_INET)
    ipv6 = _global_addresses(addrs, socket.AF_INET6)
    return (ipv4[0] if ipv4 else None, ipv6[0] if ipv6 else None)


def probe_network_context(
    runner: Callable[..., subprocess.CompletedProcess] = run,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> NetworkContext:
    """
    Discover the default interface and its addresses.

    Raises:
        NetworkProbeError: no default interface, or no IPv4 address on it
    """
    interface = get_default_interface(runner, timeout)
    if not interface:
        raise NetworkProbeError("Cannot find default interface")

    ipv4, ipv6 = get_interface_addresses(interface)
    if not ipv4:
        raise NetworkProbeError(f"Cannot find local IPv4 address on {interface}")

    logger.info(f"Default interface: {interface}")
    logger.info(f"Local IP: {ipv4}")
    if ipv6:
        logger.info(f"Local IPv6: {ipv6}")
    else:
        logger.warning(f"No global IPv6 address on {interface}; IPv6 forwards will be skipped")

    return NetworkContext(interface=interface, ipv4_address=ipv4, ipv6_address=ipv6)
