"""Structured logging setup using structlog."""

import logging
import structlog
from typing import Any

# Third-party loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "yfinance", "urllib3")


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog on top of stdlib logging.

    The console renderer is used for the Rich dashboard; ``json_output`` switches
    to one JSON object per line for the HTTP service.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)  # Plain text for Rich compatibility
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
