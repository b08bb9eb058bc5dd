"""Exceptions raised by portforward."""

from typing import List, Optional


class PortForwardError(Exception):
    """Base class for all portforward errors."""


class PreconditionError(PortForwardError):
    """The host cannot run a pass (privileges, missing tools)."""


class ConfigError(PortForwardError):
    """Configuration or settings file could not be used."""


class ConfigNotFound(ConfigError):
    """Configuration file was missing and a template was written."""

    def __init__(self, path):
        self.path = path
        super().__init__(
            f"Created config template at {path}. Edit it and re-run."
        )


class NetworkProbeError(PortForwardError):
    """Default interface or its addresses could not be discovered."""


class LockError(PortForwardError):
    """Another pass already holds the run lock."""


class InvalidTargetFormat(PortForwardError, ValueError):
    """A forwarding target could not be parsed."""


class InvalidProtocol(InvalidTargetFormat):
    """Protocol prefix was not tcp or udp."""


class InvalidPort(InvalidTargetFormat):
    """Port was not a number between 1 and 65535."""


class RuleStoreError(PortForwardError):
    """An iptables call failed."""

    def __init__(self, message: str, cmd: Optional[List[str]] = None, stderr: str = ""):
        self.cmd = cmd or []
        self.stderr = stderr.strip()
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)
