"""Logging setup for Ledger Vault.

All modules log through the standard library ``logging`` package under the
``lvault`` namespace. Configuration comes from :class:`LoggingConfig`.
"""
from __future__ import annotations

import functools
import inspect
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .config import LoggingConfig, get_config

ROOT_LOGGER_NAME = "lvault"

_configured = False


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: Optional[LoggingConfig] = None, *, force: bool = False) -> logging.Logger:
    """Attach handlers to the ``lvault`` root logger.

    Safe to call repeatedly; handlers are only installed once unless
    ``force`` is set.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured and not force:
        return root

    config = config or get_config().logging
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    if config.console_output:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.log_dir:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "lvault.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root.propagate = False
    _configured = True
    return root


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger in the ``lvault`` namespace."""
    configure_logging()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


class Timer:
    """Context manager measuring elapsed wall time in milliseconds.

    Usage:
        with Timer(logger, "upload state") as t:
            ...
        t.elapsed_ms
    """

    def __init__(self, logger: Optional[logging.Logger] = None, label: str = "operation"):
        self.logger = logger
        self.label = label
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
        if self.logger is not None:
            status = "failed" if exc_type else "done"
            self.logger.debug(f"{self.label} {status} in {self.elapsed_ms:.1f}ms")


def log_operation(logger: logging.Logger, label: Optional[str] = None) -> Callable:
    """Decorator logging the duration of sync or async callables at DEBUG."""

    def decorator(fn: Callable) -> Callable:
        op = label or fn.__qualname__

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with Timer(logger, op):
                    return await fn(*args, **kwargs)
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with Timer(logger, op):
                return fn(*args, **kwargs)
        return wrapper

    return decorator
