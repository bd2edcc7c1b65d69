import sys
from typing import Optional

from loguru import logger

from rtp_audit.core.config import LoggingSettings


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Replace loguru's default sink with the audit console (and file) sinks."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )
    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} - {level} - {message}",
            rotation="10 MB",
        )
    logger.info(f"Logging level set to {level.upper()}")


def setup_logging_from_settings(settings: LoggingSettings) -> None:
    setup_logging(settings.level, settings.file)
