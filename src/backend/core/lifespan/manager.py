"""
Application lifespan manager.

Handles startup and shutdown events for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.config import settings
from core.logging_config import LogConfig, stop_queue_listener
from . import tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    log_config = LogConfig(**settings.logging.log_config)
    await tasks.initialize_logging(log_config)

    logger = logging.getLogger("main")
    logger.info(f"Starting {settings.api.app_name} {settings.api.app_version}")

    await tasks.log_cors_configuration(settings, logger)
    await tasks.initialize_database()

    yield

    logger.info(f"Shutting down {settings.api.app_name}")

    await tasks.shutdown_activity_dispatcher()
    await tasks.shutdown_database()

    stop_queue_listener()
