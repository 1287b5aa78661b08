"""Logging setup shared by the CLI and library modules"""

import logging
import os
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_DEBUG_ENV_VARS = ("REGISTRY_CLEANER_DEBUG", "RUNNER_DEBUG", "ACTIONS_STEP_DEBUG")
_NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    """Configure the root logger once; later calls leave it alone"""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)
    apply_log_level(level)


def apply_log_level(level: int) -> None:
    """Set the root level; HTTP connection pool chatter only shows at DEBUG"""
    logging.getLogger().setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)


def debug_requested() -> bool:
    """True when any of the debug environment switches is set"""
    return any(os.environ.get(name, "").lower() in ("true", "1", "yes") for name in _DEBUG_ENV_VARS)


def resolve_log_level(verbose: bool = False) -> int:
    if verbose or debug_requested():
        return logging.DEBUG
    return logging.INFO


def get_logger(name: Optional[str] = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name or "registry_cleaner")


def log_exception(logger: logging.Logger, message: str, error: Optional[BaseException] = None) -> None:
    """Log a fatal failure; the traceback is only emitted at DEBUG level.

    Args:
        logger: Logger to write to
        message: What was being attempted
        error: The exception, when the caller holds it
    """
    if error is None:
        logger.error(message)
    else:
        logger.error(f"{message}: {type(error).__name__}: {error}")
    logger.debug("Traceback:", exc_info=error if error is not None else True)
