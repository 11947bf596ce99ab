"""Console output and structured log configuration.

Two channels, kept apart:

- Console: short human-readable lines printed through Rich, used by the CLI.
- File: JSON Lines written by structlog through a rotating stdlib handler.
  Library modules only ever call ``structlog.get_logger()``; nothing reaches
  the file until the host calls ``configure()``.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from plexcord_status.config import Config

APP_NAME = "plexcord-status"

_console = Console(highlight=False)


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"


_LEVEL_TAGS = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# ─────────────────────────────────────────────────────────────────────────────
# Console
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print one console line: time, level tag, optional icon, message.

    ``msg`` may contain Rich markup.
    """
    tag = _LEVEL_TAGS.get(level, f"[{level}]")
    parts = [f"[dim]{datetime.now():%H:%M:%S}[/]", tag]
    if icon:
        parts.append(icon)
    parts.append(msg)
    _console.print(" ".join(parts))


def info(msg: str, icon: str = "") -> None:
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    log("error", msg, icon)


def config_created(path: str) -> None:
    info(f"Created config at [cyan]{path}[/]", Icon.OK)


def config_exists(path: str) -> None:
    warn(f"Config already exists at [cyan]{path}[/] [dim](use --force to overwrite)[/]")


def config_invalid(error_msg: str) -> None:
    error(f"Invalid config: {error_msg}", Icon.FAIL)


def unknown_error_code(code: str) -> None:
    """Warn that ``code`` is not in the catalog."""
    warn(f"Unknown error code [bold]{code}[/] [dim](showing UNKNOWN_ERROR)[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structured file log
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Processor stamping every event with the emitting application."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source_app"] = source
        return event_dict

    return processor


def _common_processors() -> list[structlog.types.Processor]:
    """Enrichment shared by structlog events and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source(APP_NAME),
    ]


def _file_handler(config: Config, level: int) -> logging.Handler:
    config.state_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.log_max_bytes,
        backupCount=config.logging.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[*_common_processors(), structlog.processors.format_exc_info],
        )
    )
    return handler


def configure(config: Config) -> None:
    """Route structlog events to ``config.log_path`` as JSON Lines.

    Replaces any handlers on the stdlib root logger, so calling it again
    (e.g. after a config reload) does not duplicate output.
    """
    level = _LEVELS.get(config.logging.level, logging.INFO)

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(_file_handler(config, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_common_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
