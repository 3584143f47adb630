import logging
from typing import Optional

from .settings import LoggingSettings


def setup_logger(config: Optional[LoggingSettings] = None, *, level: Optional[str] = None) -> logging.Logger:
    """
    Sets up root logging from the provided configuration.
    """
    if config is None:
        from .settings import settings

        config = settings.logging

    log_level = (level or config.level or "INFO").upper()
    log_format = config.format

    logging.basicConfig(level=log_level, format=log_format)
    logging.getLogger().setLevel(log_level)

    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    return logging.getLogger("verbalized")
