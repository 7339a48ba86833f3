# services/logger_config.py
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# Backends that log every request or batch at INFO
NOISY_LOGGERS = ("chromadb", "httpx", "httpcore", "sentence_transformers", "urllib3", "openai")


def _file_handler(path: str, formatter: logging.Formatter) -> Optional[logging.Handler]:
    try:
        log_dir = os.path.dirname(path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging disabled ({path}): {e}")
        return None
    handler.setFormatter(formatter)
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger: rotating file plus console.

    Safe to call more than once; handlers are replaced, not stacked.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    logger = logging.getLogger(settings.LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(level_name)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = _file_handler(settings.LOG_FILE_PATH, formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level_name)
    logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {level_name} (file: {settings.LOG_FILE_PATH})")
    return logger
