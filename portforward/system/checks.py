"""Host preflight checks, IP forwarding and the run lock."""

import fcntl
import logging
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..constants import (
    DEFAULT_TIMEOUT, IPV4_FORWARD_SYSCTL, IPV6_FORWARD_SYSCTL, REQUIRED_COMMANDS,
)
from ..errors import LockError, PreconditionError
from ..utils import command_exists, require_root, run

logger = logging.getLogger(__name__)


def check_commands(commands: Iterable[str] = REQUIRED_COMMANDS,
                   exists: Callable[[str], bool] = command_exists) -> None:
    """Raise if any required command is missing."""
    missing = [cmd for cmd in commands if not exists(cmd)]
    if missing:
        raise PreconditionError(f"Required command(s) not installed: {', '.join(missing)}")


def preflight(need_root: bool = True) -> None:
    """Run the checks every reconciliation pass needs."""
    if need_root:
        require_root()
    check_commands()


def ensure_sysctl(
    key: str,
    runner: Callable[..., subprocess.CompletedProcess] = run,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> bool:
    """
    Make sure a boolean sysctl is set to 1.

    Returns:
        True if the value is (now) 1
    """
    try:
        result = runner(["sysctl", "-n", key], check=False, timeout=timeout)
        if result.returncode == 0 and result.stdout.strip() == "1":
            logger.info(f"{key} is already enabled")
            return True

        logger.warning(f"Enabling {key}")
        result = runner(["sysctl", "-w", f"{key}=1"], check=False, timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Could not enable {key}: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"Could not enable {key}: {(result.stderr or '').strip()}")
        return False
    return True


def enable_ip_forwarding(ipv6: bool = False, **kwargs) -> List[str]:
    """Enable IPv4 (and optionally IPv6) forwarding, returning the keys that failed."""
    keys = [IPV4_FORWARD_SYSCTL]
    if ipv6:
        keys.append(IPV6_FORWARD_SYSCTL)
    return [key for key in keys if not ensure_sysctl(key, **kwargs)]


@contextmanager
def run_lock(path: Path):
    """Hold an exclusive lock for the duration of a pass."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "a")
    except OSError as e:
        raise LockError(f"Cannot open lock file {path}: {e}") from e

    with handle:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise LockError(f"Another portforward run holds {path}") from e
        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)
