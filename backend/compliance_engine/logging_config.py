"""
Logging setup shared by the CLI entry points and embedding applications.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure root logging from settings.

    Console output always; a rotating file handler is added when
    ``log_file`` is configured.
    """
    settings = settings or get_settings()

    logging.basicConfig(level=getattr(logging, settings.log_level), format=LOG_FORMAT)

    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)

    # SQL statement logging is controlled by database_echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
