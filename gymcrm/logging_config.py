"""
Logging configuration for Gym CRM.

Single 'gymcrm' logger used across all modules.

  Log file : logs/gymcrm.log
  Rotation : 5 MB × 3 backups
  Level    : LOG_LEVEL env var (DEBUG / INFO / WARNING / ERROR / CRITICAL)
             defaults to INFO when unset
  Console  : optional, used by the long-running scheduler command

Usage
-----
    from gymcrm.logging_config import configure_logging, log_call

    # Once at startup (idempotent, safe to call multiple times):
    configure_logging()

    # On any function or coroutine you want traced:
    @log_call
    async def check_recurring_sessions(self, now):
        ...

Log format per line
-------------------
    2026-02-16 08:00:01 | INFO     | CALL check_one_time_sessions | args=(...)
    2026-02-16 08:00:01 | INFO     | OK   check_one_time_sessions | 420ms
    2026-02-16 08:00:01 | ERROR    | FAIL customers_add | ValueError: Name and phone are required | 3ms
"""

import functools
import inspect
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "gymcrm.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3


def configure_logging(console: bool = False) -> logging.Logger:
    """
    Set up the gymcrm logger. Idempotent, safe to call on every CLI entry.
    With console=True a stderr handler is added once, even if the file
    handler was configured by an earlier call.
    Returns the configured logger.
    """
    _LOG_DIR.mkdir(exist_ok=True)

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger("gymcrm")
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    has_file = any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers)
    has_console = any(type(h) is logging.StreamHandler for h in logger.handlers)

    if not has_file:
        logger.setLevel(level)
        handler = logging.handlers.RotatingFileHandler(
            _LOG_FILE,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if console and not has_console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    return logger


def _arg_string(args, kwargs) -> str:
    parts = [repr(a) for a in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
    return ", ".join(parts) if parts else "-"


def log_call(func):
    """
    Decorator: logs entry, clean exit, and exceptions for any function.
    Coroutine functions are wrapped with an async wrapper so the timing
    covers the awaited body.

    - DEBUG on entry   : CALL <name> | args=(...)
    - INFO  on success : OK   <name> | <N>ms
    - ERROR on failure : FAIL <name> | ExcType: message | <N>ms   (then re-raises)
    """
    name = func.__name__

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = logging.getLogger("gymcrm")
            start = time.perf_counter()
            logger.debug(f"CALL {name} | args=({_arg_string(args, kwargs)})")
            try:
                result = await func(*args, **kwargs)
                ms = int((time.perf_counter() - start) * 1000)
                logger.info(f"OK   {name} | {ms}ms")
                return result
            except Exception as exc:
                ms = int((time.perf_counter() - start) * 1000)
                logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("gymcrm")
        start = time.perf_counter()
        logger.debug(f"CALL {name} | args=({_arg_string(args, kwargs)})")

        try:
            result = func(*args, **kwargs)
            ms = int((time.perf_counter() - start) * 1000)
            logger.info(f"OK   {name} | {ms}ms")
            return result
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise

    return wrapper
