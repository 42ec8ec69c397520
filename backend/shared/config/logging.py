import logging
import os

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int | str | None = None) -> None:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=os.getenv("LOG_FORMAT", DEFAULT_LOG_FORMAT))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
