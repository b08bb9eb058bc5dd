"""Host inspection modules."""

from .network import NetworkContext, probe_network_context
from .ports import is_port_bound
from .checks import preflight, check_commands, enable_ip_forwarding, run_lock
