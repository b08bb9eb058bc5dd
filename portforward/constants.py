"""Constants used throughout the application."""

from pathlib import Path

# Paths
CONFIG_DIR = Path("/usr/local/etc/portforward")
CONFIG_FILE = CONFIG_DIR / "config.ini"
SETTINGS_FILE = CONFIG_DIR / "settings.yaml"
LOCK_FILE = Path("/run/portforward.lock")

# Rule store
NAT_TABLE = "nat"
PREROUTING = "PREROUTING"
POSTROUTING = "POSTROUTING"
IPTABLES = {"v4": "iptables", "v6": "ip6tables"}
HOST_PREFIX = {"v4": 32, "v6": 128}

# Protocols
PROTOCOLS = ("tcp", "udp")

# Commands that must exist before any pass
REQUIRED_COMMANDS = ["iptables", "ip"]

# Sysctl keys
IPV4_FORWARD_SYSCTL = "net.ipv4.ip_forward"
IPV6_FORWARD_SYSCTL = "net.ipv6.conf.all.forwarding"

DEFAULT_TIMEOUT = 30

CONFIG_TEMPLATE = """# Port forwarding configuration
# Format: <local_port> = [<proto>://]<destination_host>:<destination_port>
#
# <proto> is tcp or udp. Leave it out to forward both.
# IPv6 destinations use brackets: 9090 = [2001:db8::1]:6000
#
#8088=tcp://1.2.4.8:5000
"""
