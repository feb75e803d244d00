"""
Lifespan startup and shutdown task functions.

Each function handles one step of the startup or shutdown sequence.
"""

import logging


async def initialize_logging(log_config):
    """Setup logging configuration."""
    from core.logging_config import setup_logging

    setup_logging(log_config)
    logging.getLogger("main").info("Logging configured")


async def log_cors_configuration(settings, logger):
    """Log CORS configuration for debugging."""
    logger.info(f"CORS Allowed Origins: {settings.cors.origins}")


async def initialize_database():
    """Create missing tables."""
    from core.database import init_db

    logger = logging.getLogger("main")
    await init_db()
    logger.info("Database initialized")


async def shutdown_activity_dispatcher():
    """Close the notification webhook client."""
    from services.activity_dispatcher import ActivityDispatcher

    logger = logging.getLogger("main")
    try:
        await ActivityDispatcher.close()
        logger.info("Activity dispatcher closed")
    except Exception as e:
        logger.warning(f"Activity dispatcher shutdown error: {e}")


async def shutdown_database():
    """Close database connections."""
    from core.database import close_db

    logger = logging.getLogger("main")
    await close_db()
    logger.info("Database connections closed")
