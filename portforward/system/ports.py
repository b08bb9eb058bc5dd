"""Local socket table queries."""

import logging
import socket

import psutil

from ..errors import PreconditionError

logger = logging.getLogger(__name__)


def is_port_bound(port: int) -> bool:
    """
    Check whether any process listens on or has bound a local port.

    Covers TCP listeners and bound UDP sockets on any local address,
    IPv4 and IPv6.
    """
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.AccessDenied as e:
        raise PreconditionError("Reading the socket table requires root") from e

    for conn in connections:
        if not conn.laddr or conn.laddr.port != port:
            continue
        if conn.type == socket.SOCK_STREAM and conn.status == psutil.CONN_LISTEN:
            logger.debug(f"Port {port} has a TCP listener (pid {conn.pid})")
            return True
        if conn.type == socket.SOCK_DGRAM:
            logger.debug(f"Port {port} has a bound UDP socket (pid {conn.pid})")
            return True
    return False
