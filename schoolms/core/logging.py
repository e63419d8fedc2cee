import logging

from schoolms.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER_NAME = "schoolms"


def setup_logging() -> logging.Logger:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Avoid duplicate console handlers when the app is re-created (tests, reload)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger(ROOT_LOGGER_NAME)
    return base.getChild(name) if name else base
