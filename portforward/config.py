"""Settings and forwarding configuration loading."""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .constants import (
    CONFIG_FILE, CONFIG_TEMPLATE, DEFAULT_TIMEOUT, LOCK_FILE, SETTINGS_FILE,
)
from .errors import ConfigError, ConfigNotFound

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Application settings."""
    config_file: Path = CONFIG_FILE
    command_timeout: float = DEFAULT_TIMEOUT
    lock_file: Path = LOCK_FILE
    auto_continue: bool = False
    reject_duplicate_ports: bool = False
    enable_ip_forwarding: bool = True
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self):
        self.config_file = Path(self.config_file)
        self.lock_file = Path(self.lock_file)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

        try:
            self.command_timeout = float(self.command_timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"command_timeout must be a number, got {self.command_timeout!r}")
        if self.command_timeout <= 0:
            raise ConfigError("command_timeout must be positive")

        for name in ("auto_continue", "reject_duplicate_ports", "enable_ip_forwarding"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")

        self.log_level = str(self.log_level).upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ConfigError(f"Unknown log_level: {self.log_level}")


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from YAML file, falling back to defaults."""
    if path is None:
        path = SETTINGS_FILE

    if not path.exists():
        return Settings()

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read settings {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")

    known = {f.name for f in fields(Settings)}
    for key in sorted(set(data) - known):
        logger.warning(f"Ignoring unknown setting '{key}' in {path}")

    return Settings(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class ForwardingEntry:
    """One mapping line from the configuration file."""
    local_port: str
    raw_target: str
    line: int = field(default=0, compare=False)


def write_template(path: Path) -> None:
    """Write the commented configuration template."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE)


def port_key(local_port: str) -> str:
    """Canonical spelling of a port key, so '08088' and '8088' collide."""
    if local_port.isascii() and local_port.isdigit():
        return str(int(local_port))
    return local_port


def parse_forward_config(text: str, reject_duplicates: bool = False) -> Dict[str, ForwardingEntry]:
    """
    Parse configuration text into a port -> entry mapping.

    Lines are split on the first '='. Blank lines, comments and lines
    with an empty key or value are skipped. A repeated port keeps the
    last occurrence unless reject_duplicates is set.
    """
    entries: Dict[str, ForwardingEntry] = {}

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()
        if not key or key.startswith('#') or not value:
            continue

        port = port_key(key)
        previous = entries.get(port)
        if previous is not None:
            message = f"Port {port} defined on line {previous.line} and line {lineno}"
            if reject_duplicates:
                raise ConfigError(message)
            logger.warning(f"{message}; using line {lineno}")

        entries[port] = ForwardingEntry(local_port=key, raw_target=value, line=lineno)

    return entries


def read_forward_config(
    path: Optional[Path] = None,
    auto_continue: bool = False,
    reject_duplicates: bool = False,
) -> List[ForwardingEntry]:
    """
    Load forwarding entries from the configuration file.

    Args:
        path: Config file path (defaults to CONFIG_FILE)
        auto_continue: Return no entries instead of raising when the file is missing
        reject_duplicates: Treat a repeated local port as an error

    Returns:
        Entries in file order
    """
    if path is None:
        path = CONFIG_FILE

    if not path.exists():
        logger.warning(f"Creating config file at {path}")
        try:
            write_template(path)
        except OSError as e:
            raise ConfigError(f"Cannot create config file {path}: {e}") from e
        if auto_continue:
            return []
        raise ConfigNotFound(path)

    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    entries = parse_forward_config(text, reject_duplicates=reject_duplicates)
    logger.debug(f"Loaded {len(entries)} mapping(s) from {path}")
    return list(entries.values())


def settings_as_dict(settings: Settings) -> Dict[str, Any]:
    """Convert settings to a plain dict for display."""
    return {f.name: getattr(settings, f.name) for f in fields(settings)}
