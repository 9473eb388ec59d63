from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def setup_logging(filename: str | Path | None = None, *, level: int = logging.INFO) -> structlog.BoundLogger:
    """Set up structured logging for the project_fusion package.

    Configuration happens once per process. Passing a filename on a later call
    attaches an extra file handler to the root logger instead of reconfiguring.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.
        level: Minimum level emitted by the structlog filtering logger.

    Returns:
        A structlog logger instance configured for the project_fusion package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED:
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=level,
            handlers=handlers,
            format="%(message)s",
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True
    elif filename:
        root = logging.getLogger()
        target = os.path.abspath(str(filename))
        known = {getattr(h, "baseFilename", None) for h in root.handlers}
        if target not in known:
            root.addHandler(logging.FileHandler(target, encoding="utf-8"))

    return structlog.get_logger("project_fusion")


logger = setup_logging()
