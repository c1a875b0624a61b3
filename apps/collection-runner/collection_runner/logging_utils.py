"""Structured logging helpers for the collection runner."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LOGGER_NAME = "collection_runner"


class RichConsoleRenderer:
    """structlog renderer using Rich for colored console output."""

    def __init__(self) -> None:
        self.level_styles = {
            "debug": "dim cyan",
            "info": "cyan",
            "warning": "yellow",
            "error": "bold red",
            "critical": "bold white on red",
        }

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        # Align key-value pairs after the event name
        padding = max(0, 32 - len(event))
        if padding > 0 and event_dict:
            text.append(" " * padding)

        items = [(key, value) for key, value in sorted(event_dict.items()) if key not in ("stack", "exception")]
        for i, (key, value) in enumerate(items):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if i < len(items) - 1:
                text.append(" ")

        exception = event_dict.get("exception")
        if exception:
            text.append("\n")
            text.append(str(exception), style="red")

        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=200, legacy_windows=False).print(text, end="")
        return buffer.getvalue()


def _renderer(log_format: LogFormat) -> Any:
    if log_format == "console":
        return RichConsoleRenderer()
    if log_format == "plain":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer(sort_keys=True)


def configure_logging(
    log_level: str,
    log_format: LogFormat = "console",
    log_file: Path | None = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog over stdlib logging.

    The console handler uses ``log_format``; an optional log file always
    receives plain text at INFO or below.
    """

    console_level = getattr(logging, log_level.upper(), logging.WARNING)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(log_format)],
        )
    )
    handlers: list[logging.Handler] = [console_handler]
    effective_level = console_level

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_level = min(console_level, logging.INFO)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(colors=False),
                ],
            )
        )
        handlers.append(file_handler)
        effective_level = min(effective_level, file_level)

    logging.basicConfig(level=effective_level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(effective_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(LOGGER_NAME)
