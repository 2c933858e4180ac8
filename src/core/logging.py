import logging

from src.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Apply the configured level and format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
    )
    # urllib3 logs every webhook POST at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
