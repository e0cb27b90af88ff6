import sys

from loguru import logger

from .config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[task]}</cyan> | {message}"
)


def configure_logging(level: str | None = None) -> None:
    """Route loguru to stderr with the task name in every line."""
    logger.remove()
    logger.configure(extra={"task": "-"})
    logger.add(sys.stderr, level=(level or settings.log_level).upper(), format=LOG_FORMAT)
