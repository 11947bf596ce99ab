"""Configuration system for plexcord-status."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class ReconnectConfig:
    """Auto-reconnect after (re)initialization."""

    enabled: bool = True
    settle_delay: float = 0.5  # Seconds to let pushed state settle before evaluating


@dataclass
class RefreshConfig:
    """Pull refresh behavior."""

    fence_stale_refresh: bool = True  # Discard replies from superseded refreshes


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "plexcord-status"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "plexcord-status"

    @property
    def log_path(self) -> Path:
        """JSON lines log path."""
        return self.state_dir / "status.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("reconnect", "refresh", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            reconnect=_load_reconnect_config(data.get("reconnect", {})),
            refresh=_load_refresh_config(data.get("refresh", {})),
            logging=_load_logging_config(data.get("logging", {})),
        )


def _load_reconnect_config(data: dict) -> ReconnectConfig:
    """Load reconnect config, validating the settle delay."""
    defaults = ReconnectConfig()
    settle_delay = data.get("settle_delay", defaults.settle_delay)
    if settle_delay < 0:
        raise ValueError(f"settle_delay must be >= 0, got {settle_delay}")
    return ReconnectConfig(
        enabled=bool(data.get("enabled", defaults.enabled)),
        settle_delay=float(settle_delay),
    )


def _load_refresh_config(data: dict) -> RefreshConfig:
    d = RefreshConfig()
    return RefreshConfig(
        fence_stale_refresh=bool(data.get("fence_stale_refresh", d.fence_stale_refresh)),
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config, validating level and rotation settings."""
    defaults = LoggingConfig()
    level = str(data.get("level", defaults.level)).lower()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid logging level: {level!r}. Must be one of {VALID_LOG_LEVELS}")

    log_max_bytes = data.get("log_max_bytes", defaults.log_max_bytes)
    log_backup_count = data.get("log_backup_count", defaults.log_backup_count)
    if log_max_bytes < 1:
        raise ValueError(f"log_max_bytes must be >= 1, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {log_backup_count}")

    return LoggingConfig(
        level=level,
        log_max_bytes=log_max_bytes,
        log_backup_count=log_backup_count,
    )
