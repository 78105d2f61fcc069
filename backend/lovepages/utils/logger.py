"""
Logging — console plus one file per area under LOG_DIR
(server.log, payments.log, webhooks.log).
"""
import logging
import os
import sys

from lovepages.config import get_settings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str, filename: str = "server.log") -> logging.Logger:
    """Return a logger writing to stdout and LOG_DIR/filename. Handlers are attached once."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    settings = get_settings()
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.propagate = False
    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, filename))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning("File logging disabled for %s: %s", filename, e)

    return logger
