"""
Logging setup for wagate.

Thin wrapper around loguru so modules can do::

    from wagate.logger import get_logger
    logger = get_logger(__name__)
"""

import sys
from typing import Optional

from loguru import logger as _logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_configured = False


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the global loguru sinks.

    Args:
        level: Minimum level for the console sink.
        log_file: Optional path for a rotating file sink.
    """
    global _configured

    _logger.remove()
    _logger.configure(extra={"name": "wagate"})
    _logger.add(sys.stderr, level=level.upper(), format=_FORMAT, enqueue=False)

    if log_file:
        _logger.add(
            log_file,
            level=level.upper(),
            format=_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )

    _configured = True


def get_logger(name: str):
    """Return a logger bound to the given module name."""
    if not _configured:
        _logger.configure(extra={"name": "wagate"})
    return _logger.bind(name=name)
