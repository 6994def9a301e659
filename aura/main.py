"""
Main — starting Aura.

``configure_logging()`` sets up structlog over the standard library logger
with a console renderer and a processor that truncates user content before
it reaches the log. ``main()`` hands over to the click CLI, whose default
command is the interactive chat.
"""

from __future__ import annotations

import logging
import os

import structlog

# Log fields that can carry what the user wrote or what was said back.
_USER_CONTENT_KEYS = frozenset({"content", "utterance", "query", "fact", "answer", "title"})
_MAX_DISPLAY_LEN = 80


def _truncate_user_content(logger, method_name, event_dict):
    """Structlog processor that keeps user-authored text short in log output."""
    for key in _USER_CONTENT_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure structlog and stdlib logging. Later calls are no-ops."""
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("AURA_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_user_content,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for ``python -m aura.main``."""
    from aura.cli.app import cli

    configure_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
