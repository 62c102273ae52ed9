"""
Logging configuration for tavern_context.
"""

import logging
import sys


def setup_logging(level: str | int = logging.INFO) -> logging.Logger:
    """
    Configure application logging.

    :param level: Level name ("DEBUG", "INFO", ...) or numeric level
    :return: The package logger
    :rtype: logging.Logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logger = logging.getLogger('tavern_context')
    logger.setLevel(level)
    return logger
