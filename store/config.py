"""
Runtime configuration and logging setup.

Every knob is a module-level constant with an environment override.
Constructors that take the same setting as an argument win over these.
"""

import logging
import os
import sys

import structlog


RECORD_TABLE = "roadmap_fields"
COLUMN_TABLE = "column_config"

# Debounce window for batched cell edits
EDIT_DEBOUNCE_SECONDS = int(os.getenv("ROADMAP_EDIT_DEBOUNCE_MS", "300")) / 1000.0

TERMINAL_STATUS = os.getenv("ROADMAP_TERMINAL_STATUS", "Completed")
STATUS_OPTIONS = ["Active", "Backlog", "Completed"]

LOG_LEVEL = os.getenv("ROADMAP_LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("ROADMAP_LOG_FORMAT", "console")  # console | json


def configure_logging(level=None, fmt=None):
    """Wire structlog on top of the stdlib root handler."""
    level = (level or LOG_LEVEL).upper()
    fmt = fmt or LOG_FORMAT

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer)

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)
