"""Utility functions for portforward."""

import os
import logging
import subprocess
from pathlib import Path
from typing import Optional, List, Tuple

from rich.console import Console
from rich.logging import RichHandler

from .constants import DEFAULT_TIMEOUT
from .errors import PreconditionError

logger = logging.getLogger(__name__)


def check_root() -> bool:
    """Check if running as root."""
    return os.geteuid() == 0


def require_root() -> None:
    """Raise if not running as root."""
    if not check_root():
        raise PreconditionError("This command must be run as root (use sudo)")


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup application logging. Console output goes to stderr, stdout is for results."""
    handlers: List[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_time=False, show_path=False, markup=False)
    ]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format='%(message)s',
        handlers=handlers,
        force=True,
    )


def run(
    cmd: List[str],
    check: bool = True,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a shell command."""
    logger.debug(f"Running command: {' '.join(cmd)}")
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=check,
        )
    except subprocess.CalledProcessError as e:
        logger.debug(f"Command failed: {' '.join(cmd)}")
        if e.stderr:
            logger.debug(f"Error output: {e.stderr.strip()}")
        raise
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out: {' '.join(cmd)}")
        raise


def run_silent(cmd: List[str], timeout: Optional[float] = DEFAULT_TIMEOUT) -> Tuple[bool, str]:
    """Run command silently, return (success, output)."""
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout
        )
        return result.returncode == 0, result.stdout
    except (OSError, subprocess.SubprocessError) as e:
        return False, str(e)


def command_exists(name: str) -> bool:
    """Check if a command is available on PATH."""
    success, _ = run_silent(["which", name])
    return success


def validate_port(port: int) -> bool:
    """Validate port number."""
    return 1 <= port <= 65535
