"""
Logging helpers for the AutoCart OAuth backend: console + optional rotating file.

Usage:

    from autocart_backend.logging_util import configure_logging, get_logger, mask_sensitive

    configure_logging(level="DEBUG", log_file="backend.log")

    logger = get_logger(__name__)
    logger.info(f"Exchanging code {mask_sensitive(code)}")

Authorization codes, access tokens and client secrets must only ever be
logged through `mask_sensitive`.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional, Union


_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# uvicorn installs its own handlers; route them through the root logger instead
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _to_level(level: Union[int, str]) -> int:
    """Convert string/int level to a logging level int."""
    if isinstance(level, int):
        return level
    return _LEVEL_MAP.get(level.upper(), logging.INFO)


def configure_logging(
    *,
    level: Union[int, str] = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%d %H:%M:%S",
) -> None:
    """
    Configure application-wide logging.

    Parameters
    ----------
    level:
        Root logger level. Can be int or string (e.g. "DEBUG").
    log_file:
        If provided, logs also go to a rotating file.
    max_bytes:
        Maximum size of each log file before rotation.
    backup_count:
        How many rotated log files to keep.
    fmt, datefmt:
        Log record and timestamp formats.

    Existing root handlers are replaced so repeated calls do not duplicate output.
    """
    root = logging.getLogger()
    root.setLevel(_to_level(level))

    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _UVICORN_LOGGERS:
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


def mask_sensitive(value: Optional[str], keep: int = 4) -> str:
    """Keep the first `keep` characters of a secret and hide the rest."""
    if not value:
        return "<empty>"
    if len(value) <= keep:
        return "****"
    return f"{value[:keep]}****"
