"""Logging configuration for the clinic leave service."""

import logging
import sys

from clinic.config import settings


def setup_logging() -> None:
    """Configure the root logger from ``settings.LOG_LEVEL``.

    Third-party loggers that are chatty at INFO (uvicorn access log,
    SQLAlchemy engine) are pinned to WARNING.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured: level=%s, env=%s",
        settings.LOG_LEVEL,
        settings.ENVIRONMENT,
    )
