"""Logging configuration for memloop.

Uses loguru. stdout belongs to the protocol stream, so every sink writes to
stderr or to a file:
- stderr, filtered by MEMLOOP_LOG_LEVEL (default: INFO)
- rotating file in MEMLOOP_LOG_DIR (default: ~/.memloop/logs),
  10 MB per file, 7 days retention, zipped. Set MEMLOOP_LOG_DIR to an
  empty string to disable it.

Component-specific overrides:
- MEMLOOP_LOG_CLIENT: outbound HTTP client log level
- MEMLOOP_LOG_STORE: correlation store log level
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

_global_log_level = os.getenv("MEMLOOP_LOG_LEVEL", "INFO").upper()

_component_log_levels: dict[str, str] = {
    "client": os.getenv("MEMLOOP_LOG_CLIENT", "").upper(),
    "correlation": os.getenv("MEMLOOP_LOG_STORE", "").upper(),
}


def _log_filter(record) -> bool:
    """Filter log records based on global and component-specific log levels."""
    name = record["extra"].get("name", "")

    for component, level in _component_log_levels.items():
        if level and component in name:
            try:
                return record["level"].no >= logger.level(level).no
            except ValueError:
                pass  # Invalid level, fall through to global

    try:
        return record["level"].no >= logger.level(_global_log_level).no
    except ValueError:
        return True


def _resolve_log_dir() -> Path | None:
    raw = os.getenv("MEMLOOP_LOG_DIR")
    if raw is None:
        return Path.home() / ".memloop" / "logs"
    raw = raw.strip()
    return Path(raw).expanduser() if raw else None


logger.remove()
logger.configure(extra={"name": "memloop"})

logger.add(
    sys.stderr,
    level=0,  # Accept all, let filter decide
    filter=_log_filter,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    colorize=True,
)

_log_dir = _resolve_log_dir()
if _log_dir is not None:
    try:
        _log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.bind(name="log_config").warning(f"File logging disabled, cannot create {_log_dir}: {e}")
    else:
        logger.add(
            _log_dir / "memloop_{time:YYYY-MM-DD}.log",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,  # Thread-safe
        )


def get_logger(name: str):
    """Get a logger with the given name bound to context.

    Args:
        name: Module or component name

    Returns:
        Logger instance with name bound
    """
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Context manager for timing operations with automatic logging.

    Yields:
        dict with 'elapsed_ms' key (populated after context exits)

    Example:
        with log_timing("tool search_memory", log) as timing:
            response = await dispatcher.execute(...)
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing"]
