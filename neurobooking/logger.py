import logging
import sys

from neurobooking.config import Settings

LOGGER_NAME = "neurobooking"

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(settings: Settings) -> logging.Logger:
    logger.setLevel(settings.log_level.upper())

    # Prevent duplicate handlers if the app is created more than once
    if logger.handlers:
        return logger

    # Stream handler (stdout -> container logs)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(stream_handler)

    if settings.log_path is not None:
        settings.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    return logger
