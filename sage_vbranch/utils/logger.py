"""Structured logging for sage-vbranch using structlog."""

import logging
import os

import structlog
from structlog.types import FilteringBoundLogger


# Configure structlog based on environment
def configure_structlog():
    """Configure structlog with pretty or JSON output based on LOG_FORMAT env.

    stdlib logging is routed through structlog so output from git helpers and
    watchdog shares one format and is controlled by the same levels.
    """
    log_format = os.getenv("LOG_FORMAT", "pretty").lower()
    log_colors_env = os.getenv("LOG_COLORS", "true").lower()
    log_colors = log_colors_env in ("true", "1", "yes", "on")
    log_level = os.getenv("LOG_LEVEL", "WARNING").upper()

    # Choose renderer for final output
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=log_colors)

    # Root logger + handler with ProcessorFormatter
    logging.root.handlers = []
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, log_level, logging.WARNING))

    # Capture warnings to logging
    logging.captureWarnings(True)

    # watchdog reports every inotify registration at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    # structlog pipeline; wrap_for_formatter hands off to ProcessorFormatter above
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog on module import
configure_structlog()


def set_level(level: int | str) -> None:
    """Change the effective level of all sage loggers at runtime."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.root.setLevel(level)
    logging.getLogger("sage").setLevel(level)


def git_log(
    logger: FilteringBoundLogger,
    args: tuple[str, ...] | list[str],
    returncode: int,
    duration_ms: float,
    **kwargs,
):
    """Log a finished git invocation with details."""
    logger.debug(
        f"git {' '.join(args[:2])} - {returncode}",
        args=list(args),
        returncode=returncode,
        duration_ms=duration_ms,
        **kwargs,
    )


# Create loggers directly with structlog
def get_logger(name: str, level: int | None = None) -> FilteringBoundLogger:
    """Get a configured structlog logger.

    Names are placed under the ``sage`` namespace so ``set_level`` reaches them.
    """
    qualified = name if name.startswith("sage") else f"sage.{name}"
    if level is not None:
        logging.getLogger(qualified).setLevel(level)
    return structlog.get_logger(qualified)


# Global logger instances
logger = get_logger("sage")
git_logger = get_logger("sage.git")
vbranch_logger = get_logger("sage.vbranch")
watcher_logger = get_logger("sage.watcher")
