import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from config import LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_TO_CONSOLE

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    os.makedirs(LOG_DIR, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.DEBUG))

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        handler = RotatingFileHandler(
            os.path.join(LOG_DIR, LOG_FILE),
            maxBytes=5 * 1024 * 1024,   # 5 MB
            backupCount=5,
        )
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)

        if LOG_TO_CONSOLE:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(logging.Formatter(FORMAT))
            logger.addHandler(console)

    return logger
