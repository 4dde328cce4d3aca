from __future__ import annotations

import logging
from collections.abc import Iterator
from functools import cache
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "route_proxy"
LOG_FILE_NAME = "proxy.log.jsonl"


def _level(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.strip().upper(), logging.INFO)


def _writable(log_dir: Path) -> bool:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        marker = log_dir / ".writetest"
        marker.touch(exist_ok=True)
        marker.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def log_dir_candidates(out_dir: str) -> tuple[Path, ...]:
    return (
        Path(out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / "route-cost-proxy" / "logs",
    )


def _handlers(out_dir: str) -> Iterator[logging.Handler]:
    yield logging.StreamHandler()
    log_dir = next((d for d in log_dir_candidates(out_dir) if _writable(d)), None)
    if log_dir is None:
        return
    try:
        yield logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        # Read-only deployments still get stdout logs.
        return


def configure_logging(level: str, out_dir: str) -> logging.Logger:
    """Attach JSON stdout/file handlers to the proxy logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level(level))
    logger.propagate = False
    if logger.handlers:
        return logger

    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    for handler in _handlers(out_dir):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


@cache
def get_logger() -> logging.Logger:
    return configure_logging(settings.log_level, settings.out_dir)


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    # The event name doubles as the message so plain-text viewers stay readable.
    get_logger().log(level, event, extra={"event": event, **fields})


def log_exception(event: str, **fields: Any) -> None:
    get_logger().exception(event, extra={"event": event, **fields})
