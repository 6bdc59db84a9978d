"""
Logging setup for rvm_ofx.

Library modules only create loggers under the ``rvm_ofx`` namespace;
handlers are installed by the entry points through setup_logging().
"""

import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "rvm_ofx"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Setup logging to console and, optionally, to a file.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        level: Logging level (name or number).
        log_file: Optional path of a log file.  Parent directories are created.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    return logger
