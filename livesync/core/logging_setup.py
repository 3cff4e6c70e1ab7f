import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def configure_logging(level: str = "INFO", verbose: bool = False,
                      stream: Optional[object] = None) -> logging.Logger:
    """Attach a single stream handler to the package logger"""
    logger = logging.getLogger("livesync")
    resolved = logging.DEBUG if verbose else logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unsupported log level: {level!r}")

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return logger
