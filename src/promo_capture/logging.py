import logging
import os
from typing import List, Optional, Tuple, Union


ROOT_NAME = "promo_capture"

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Loggers handed out by get_logger, so set_level can reach all of them
_configured: List[logging.Logger] = []


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def _build_handlers(level: int) -> Tuple[List[logging.Handler], Optional[str]]:
    """Stream handler plus the optional LOG_FILE handler; returns (handlers, file_error)."""
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    file_error = None

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as exc:
            file_error = str(exc)
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(formatter)
    return handlers, file_error


def get_logger(name: str) -> logging.Logger:
    """Return a configured stream logger named ``promo_capture.<name>``.

    - Honors LOG_LEVEL (default INFO) and LOG_FILE (optional path, appended).
    - Handlers are attached once per logger; nothing propagates to the root logger.
    """
    logger = logging.getLogger(f"{ROOT_NAME}.{name}")
    if getattr(logger, "_promo_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)
    handlers, file_error = _build_handlers(level)
    for handler in handlers:
        logger.addHandler(handler)
    if file_error:
        logger.warning(f"LOG_FILE could not be opened ({file_error}); continuing without file logging")

    logger.propagate = False
    setattr(logger, "_promo_configured", True)
    _configured.append(logger)
    return logger


def set_level(level: Union[str, int, None]) -> int:
    """Change the level of every promo_capture logger and its handlers at runtime."""
    resolved = _coerce_level(level)
    for logger in _configured:
        logger.setLevel(resolved)
        for handler in logger.handlers:
            handler.setLevel(resolved)
    return resolved
