"""
Logging configuration for the Service Request Desk application.
Provides structured logging with different levels and formats.

PERFORMANCE:
- Uses QueueHandler to prevent log writes from blocking the event loop
- QueueListener handles file I/O in a separate thread
"""

import atexit
import logging
import logging.handlers
import queue
import sys
from pathlib import Path
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


# Global queue listener for cleanup
_queue_listener: Optional[logging.handlers.QueueListener] = None


class LogConfig(BaseModel):
    """Logging configuration settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_file_logging: bool = True
    log_dir: str = "logs"
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    enable_console: bool = True


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    grey = "\x1b[38;21m"
    yellow = "\x1b[33;21m"
    red = "\x1b[31;21m"
    bold_red = "\x1b[31;1m"
    blue = "\x1b[34;21m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: blue,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record):
        # Color a copy so the queued file handlers get the plain levelname
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, self.grey)
        record.levelname = f"{color}{record.levelname}{self.reset}"
        return f"{super().format(record)}{self.reset}"


def _rotating_handler(config: LogConfig, filename: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        Path(config.log_dir) / filename,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, config.level.upper()))
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt=config.date_format,
        )
    )
    return handler


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """Setup application logging with configuration.

    - Console handler writes directly to stdout
    - File handlers sit behind a QueueListener running in its own thread
    - lifecycle.log receives only the structured LifecycleLogger records
    """
    global _queue_listener

    if config is None:
        config = LogConfig()

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    if config.enable_file_logging:
        Path(config.log_dir).mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, config.level.upper()))
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
                datefmt=config.date_format,
            )
        )
        root_logger.addHandler(console_handler)

    file_handlers = []

    if config.enable_file_logging:
        file_handlers.append(_rotating_handler(config, "app.log"))

        lifecycle_handler = _rotating_handler(config, "lifecycle.log")
        lifecycle_handler.addFilter(logging.Filter("lifecycle"))
        file_handlers.append(lifecycle_handler)

        db_handler = _rotating_handler(config, "database.log")
        db_handler.addFilter(logging.Filter("sqlalchemy"))
        file_handlers.append(db_handler)

    if file_handlers:
        log_queue = queue.Queue(-1)
        root_logger.addHandler(logging.handlers.QueueHandler(log_queue))

        _queue_listener = logging.handlers.QueueListener(
            log_queue,
            *file_handlers,
            respect_handler_level=True,
        )
        _queue_listener.start()
        atexit.register(stop_queue_listener)

    from .config import settings

    sqlalchemy_logger = logging.getLogger("sqlalchemy.engine")
    if settings.logging.enable_query_logging:
        sqlalchemy_logger.setLevel(getattr(logging, config.level.upper()))
    else:
        sqlalchemy_logger.setLevel(logging.WARNING)


def stop_queue_listener() -> None:
    """Stop the queue listener gracefully.

    Called automatically on exit via atexit.
    Can also be called manually during shutdown.
    """
    global _queue_listener

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None


class LifecycleLogger:
    """Structured logger for request lifecycle operations."""

    def __init__(self, name: str = "engine"):
        self.logger = logging.getLogger(f"lifecycle.{name}")

    def request_created(
        self, request_number: str, request_type: str, created_by: UUID, department: Optional[str]
    ) -> None:
        """Log when a request is created."""
        self.logger.info(
            f"Request created | Number: {request_number} | Type: {request_type} | "
            f"Created By: {created_by} | Routed To: {department or 'unrouted'}"
        )

    def transition_applied(
        self,
        request_number: str,
        actor_id: UUID,
        old_status: str,
        new_status: str,
        activity_id: int,
    ) -> None:
        """Log an applied status transition."""
        self.logger.info(
            f"Transition applied | Request: {request_number} | Actor: {actor_id} | "
            f"{old_status} -> {new_status} | Activity ID: {activity_id}"
        )

    def assignment_applied(
        self,
        request_number: str,
        actor_id: UUID,
        assignee_id: UUID,
        department: str,
        previous_assignee: Optional[UUID],
    ) -> None:
        """Log an applied assignment or re-assignment."""
        self.logger.info(
            f"Assignment applied | Request: {request_number} | Actor: {actor_id} | "
            f"Assignee: {assignee_id} | Department: {department} | "
            f"Previous: {previous_assignee or 'none'}"
        )

    def note_added(self, request_number: str, actor_id: UUID, is_internal: bool) -> None:
        """Log a note appended to a request."""
        self.logger.info(
            f"Note added | Request: {request_number} | Actor: {actor_id} | "
            f"Internal: {is_internal}"
        )

    def escalated(self, request_number: str, actor_id: UUID) -> None:
        """Log an escalation."""
        self.logger.warning(
            f"Request escalated | Request: {request_number} | Actor: {actor_id}"
        )

    def acknowledged(self, request_id: UUID, viewer_id: UUID) -> None:
        """Log a viewer acknowledging a request's activity stream."""
        self.logger.debug(
            f"Activity acknowledged | Request ID: {request_id} | Viewer: {viewer_id}"
        )

    def precondition_failed(
        self, operation: str, request_id: UUID, expected: Optional[str], current: Optional[str]
    ) -> None:
        """Log an optimistic-concurrency rejection."""
        self.logger.info(
            f"Precondition failed | Operation: {operation} | Request ID: {request_id} | "
            f"Expected: {expected} | Current: {current}"
        )

    def request_deleted(self, request_number: str, actor_id: UUID, activity_count: int) -> None:
        """Log an administrative delete."""
        self.logger.warning(
            f"Request deleted | Request: {request_number} | Actor: {actor_id} | "
            f"Activities removed: {activity_count}"
        )
