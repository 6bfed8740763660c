"""
Logging configuration for shopvac
"""

import logging
import sys
from typing import Any, Dict, Optional
import structlog
from colorama import init as colorama_init

from shopvac import __version__
from shopvac.config import config

# Initialize colorama for cross-platform colored output
colorama_init()


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Setup structured logging for the application"""
    log_level = (log_level or config.log_level).upper()
    log_format = log_format or config.log_format

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_format == "json"
            else structlog.dev.ConsoleRenderer(colors=True)
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
        force=True,
    )

    # Suppress verbose kubernetes client logs
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance"""
    return structlog.get_logger(name)


class ShopvacLogger:
    """Structured event logger for cleanup passes"""

    def __init__(self, name: str = "shopvac"):
        self.logger = get_logger(name)

    def log_startup(self, mode: str, config_dict: Dict[str, Any]) -> None:
        self.logger.info("shopvac starting up", version=__version__, mode=mode, config=config_dict)

    def log_pass_start(self, cleaner: str, scope: str, trigger: str) -> None:
        self.logger.info("Starting cleanup pass", cleaner=cleaner, scope=scope, trigger=trigger)

    def log_pass_end(self, cleaner: str, outcome) -> None:
        """Log the end of a pass with its outcome counts"""
        fields = dict(
            cleaner=cleaner,
            found=outcome.found,
            deleted=outcome.succeeded,
            failed=outcome.failed,
            dry_run=outcome.dry_run,
        )
        if outcome.fatal_error:
            self.logger.error("Cleanup pass aborted", error=outcome.fatal_error, **fields)
        elif outcome.failed:
            self.logger.warning("Cleanup pass completed with failures",
                                failures=outcome.failure_lines(), **fields)
        else:
            self.logger.info("Cleanup pass completed", **fields)

    def log_transition(self, cleaner: str, previous: str, state: str, reason: str = None) -> None:
        self.logger.info("PodCleaner state changed", cleaner=cleaner,
                         previous=previous, state=state, reason=reason)

    def log_error(self, error: Exception, context: str = None) -> None:
        """Log errors with context"""
        self.logger.error(
            "Error occurred",
            error=str(error),
            error_type=type(error).__name__,
            context=context,
            exc_info=True
        )

    def log_warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)
