"""Logging setup for the bot.

Log records are rendered through rich. Per-event context (org, repo, PR,
requestor...) travels with an ``EventLogger`` adapter and is appended to each
message as ``key=value`` pairs.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "cherrypick_bot"


def setup_logging(
    level: int = logging.INFO, console: Console | None = None
) -> logging.Logger:
    """Configure the package logger to render through rich.

    Args:
        level: Logging level.
        console: Console to log to. Defaults to stderr.

    Returns:
        The package logger.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class EventLogger(logging.LoggerAdapter):
    """Logger adapter carrying structured fields for one event."""

    def __init__(self, logger: logging.Logger, fields: dict[str, Any] | None = None):
        super().__init__(logger, dict(fields or {}))

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self.extra)

    def with_fields(self, **fields: Any) -> "EventLogger":
        """Return a new adapter with ``fields`` merged into the current ones."""
        merged = dict(self.extra)
        merged.update(fields)
        return EventLogger(self.logger, merged)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if not self.extra:
            return msg, kwargs
        rendered = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"{msg} [{rendered}]", kwargs
