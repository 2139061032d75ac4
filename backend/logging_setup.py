# backend/logging_setup.py
import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
# Chatty third-party loggers kept at WARNING unless LOG_LEVEL is DEBUG.
NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


def configure_logging(level_name=None) -> int:
    """Set up root logging from ``level_name`` or LOG_LEVEL; returns the level used."""
    name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(level if level <= logging.DEBUG else logging.WARNING)
    return level
