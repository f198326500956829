"""
Logging Setup
=============
Sets up readable, structured logging for the whole arena.

Every lifecycle transition, price poll decision, ledger write and error is
logged as a snake_case event name with keyword context, e.g.

    logger.info("signal_resolved", outcome="TP_HIT", reward_bsai=212)

Log levels:
- DEBUG: oracle misses, individual polls, store reads/writes
- INFO: state transitions, saved signals, completed missions
- WARNING: recoverable surprises (missing user during save, rejected request)
- ERROR: persistence failures, generator failures

Inside a signal run the target and user are bound as context variables, so
every event from that run carries them without repeating the kwargs.
Set LOG_JSON=1 for one JSON object per line.
"""

import sys
import logging
from pathlib import Path

import structlog


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, json_logs: bool = False) -> None:
    """
    Configure logging for the entire application.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_dir: Optional directory for arena.log
        json_logs: One JSON object per line instead of the colored console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / "arena.log", encoding="utf-8"))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    # per-request uvicorn lines only at WARNING and above
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]
    if json_logs:
        processors += [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(module_name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for a specific module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
        logger.info("signal_saved", signal_id=7, outcome="SL_HIT")
    """
    return structlog.get_logger(module_name)
