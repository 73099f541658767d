import logging
import os
from typing import Optional

PACKAGE_LOGGER = "smartthreads"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(level_name: Optional[str] = None) -> logging.Logger:
    """Attach the console handler to the package logger once; later calls only adjust the level."""
    level_name = (level_name or os.getenv("SMARTTHREADS_LOG_LEVEL", "INFO")).upper()
    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(getattr(logging, level_name, logging.INFO))
    if not package.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package.addHandler(handler)
    return package


def get_logger(name: str) -> logging.Logger:
    """Module loggers live under the package logger so they share its handler and level."""
    configure_logging()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
