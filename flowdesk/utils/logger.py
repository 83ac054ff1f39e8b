"""
Logging configuration for the client.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger
from config import get_settings


def setup_logging():
    """
    Setup client-wide logging configuration.
    """
    settings = get_settings()

    # Determine log level
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Console formatter (human-readable)
    console_formatter = logging.Formatter(
        fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(console_formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    log_file = None
    if settings.log_to_file:
        # Create logs directory if it doesn't exist
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        # File formatter (JSON for structured logging)
        json_formatter = jsonlogger.JsonFormatter(
            fmt='%(asctime)s %(name)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # File handler (daily rotation)
        log_file = log_dir / f"flowdesk_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        # Error file handler (only errors)
        error_file = log_dir / f"errors_{datetime.now().strftime('%Y%m%d')}.log"
        error_handler = logging.FileHandler(error_file)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(error_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Log startup
    root_logger.info("=" * 60)
    root_logger.info("Logging initialized")
    root_logger.info(f"Log level: {settings.log_level}")
    root_logger.info(f"Log file: {log_file or 'disabled'}")
    root_logger.info("=" * 60)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_gateway_call(
    logger: logging.Logger,
    operation: str,
    success: bool,
    time_taken: float,
    message: Optional[str] = None
):
    """
    Log a single backend round trip.

    Args:
        logger: Logger instance
        operation: Operation identifier
        success: Whether the normalized response reported success
        time_taken: Time in seconds
        message: Backend message, if any
    """
    if success:
        logger.debug(f"Call: {operation} | OK | Time: {time_taken*1000:.0f}ms")
    else:
        logger.warning(
            f"Call: {operation} | FAILED: {message} | Time: {time_taken*1000:.0f}ms"
        )


def log_execution(
    logger: logging.Logger,
    workflow_id: str,
    recorded: bool,
    session_id: Optional[str],
    time_taken: float
):
    """
    Log workflow execution details.

    Args:
        logger: Logger instance
        workflow_id: Executed workflow
        recorded: Whether the run was conversation-recorded
        session_id: Conversation used, if recorded
        time_taken: Time in seconds
    """
    mode = f"recorded in {session_id}" if recorded else "bare"
    logger.info(
        f"Workflow Executed: {workflow_id} | "
        f"Mode: {mode} | "
        f"Time: {time_taken*1000:.0f}ms"
    )


def log_error_with_context(
    logger: logging.Logger,
    error: Exception,
    context: Dict[str, Any]
):
    """
    Log error with additional context.

    Args:
        logger: Logger instance
        error: Exception object
        context: Dictionary with contextual information
    """
    logger.error(
        f"ERROR: {type(error).__name__} - {str(error)} | Context: {context}",
        exc_info=True
    )
