# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Logging configuration for the openjragent CLI and library."""

import sys
from typing import TYPE_CHECKING

from loguru import logger

from openjragent.core.events import AgentEvent, EventEmitter


if TYPE_CHECKING:
    from loguru import Record


COLORS = {
    "amber": "#E0A458",  # Warnings
    "green": "#6A994E",  # Success
    "muted": "#8D99AE",  # Timestamps, module names, extra fields
    "text": "#EDF2F4",  # Message text
    "red": "#C0392B",  # Errors
    "blue": "#4F86C6",  # Info
    "dim": "#5C677D",  # Separators, trace
}


def _log_format(record: "Record") -> str:
    """Build the loguru format string for one record.

    Structured ``extra`` fields are appended as key=value pairs.

    Args:
        record: Loguru record containing log metadata, message, and level.

    Returns:
        Format string with loguru color tags.
    """
    level_colors = {
        "TRACE": f"<fg {COLORS['dim']}>",
        "DEBUG": f"<fg {COLORS['muted']}>",
        "INFO": f"<fg {COLORS['blue']}>",
        "SUCCESS": f"<fg {COLORS['green']}>",
        "WARNING": f"<fg {COLORS['amber']}>",
        "ERROR": f"<fg {COLORS['red']}>",
        "CRITICAL": f"<fg {COLORS['red']}><bold>",
    }
    color = level_colors.get(record["level"].name, f"<fg {COLORS['text']}>")
    close = "</>"

    fmt = (
        f"<fg {COLORS['muted']}>{{time:HH:mm:ss}}{close}"
        f" <fg {COLORS['dim']}>|{close} "
        f"{color}{{level: <8}}{close}"
        f"<fg {COLORS['dim']}>|{close} "
        f"<fg {COLORS['muted']}>{{name}}{close}"
        f"<fg {COLORS['dim']}>:{close}"
        f"<fg {COLORS['text']}>{{message}}{close}"
    )

    extra = record["extra"]
    if extra:
        extra_str = " ".join(f"{k}={v!r}" for k, v in extra.items())
        # Braces in values would otherwise be read as format fields
        extra_str = extra_str.replace("{", "{{").replace("}", "}}")
        # Same for color tags
        extra_str = extra_str.replace("<", r"\<")
        fmt += f" <fg {COLORS['muted']}>| {extra_str}{close}"

    fmt += "\n"
    if record["exception"]:
        fmt += "{exception}\n"
    return fmt


def configure_logging(level: str = "INFO") -> None:
    """Replace the default loguru handler with a colored stderr handler.

    Args:
        level: Minimum log level to display (e.g., "DEBUG", "INFO", "WARNING").
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=_log_format,
        colorize=True,
    )


def log_events(emitter: EventEmitter, level: str = "DEBUG") -> None:
    """Log every event emitted on ``emitter``.

    Args:
        emitter: Emitter to subscribe to.
        level: Level the events are logged at.
    """

    def _listener(event: AgentEvent) -> None:
        logger.log(level, "Event {}", str(event.type), **event.data)

    emitter.on(None, _listener)
