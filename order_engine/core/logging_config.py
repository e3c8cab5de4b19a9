# order_engine/core/logging_config.py
"""
Centralized logging configuration for the application.

App code logs at INFO (or LOG_LEVEL); database, HTTP client and scheduler
libraries are held at WARNING so scan and order logs stay readable.
"""

import logging
import os


def configure_logging():
    """Configure the root logger and quiet the noisy library loggers."""

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    for noisy in ("httpx", "httpcore", "sqlalchemy", "sqlalchemy.engine", "asyncpg", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger("order_engine").setLevel(level)
    logging.getLogger("__main__").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at level: {log_level}")
