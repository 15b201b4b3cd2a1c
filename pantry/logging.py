"""Logging helpers: loguru sinks, stdlib interception and structured events."""

from __future__ import annotations

import logging
import sys
from typing import Any

from loguru import logger


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(level: str = "INFO", log_dir: str | None = "logs") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )
    if log_dir:
        logger.add(
            f"{log_dir}/pantry_{{time:YYYY-MM-DD}}.log",
            rotation="00:00",
            retention="30 days",
            level=level,
            format="{time:HH:mm:ss} | {level: <8} | {module}:{function}:{line} | {extra} - {message}{exception}",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    for logger_name in ["urllib3", "requests", "sqlalchemy.engine", "asyncio"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False


def bind_context(**kwargs: Any):
    """Return a logger with bound contextual fields (region/resource/worker)."""
    return logger.bind(**{k: v for k, v in kwargs.items() if v is not None})


def search_log(
    source: str,
    query: Any,
    results_raw: int,
    results_kept: int | None = None,
    duration_ms: float | None = None,
    **ctx: Any,
) -> None:
    payload = {
        "source": source,
        "query": query,
        "results_raw": results_raw,
    }
    if results_kept is not None:
        payload["results_kept"] = results_kept
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 1)
    payload.update({k: v for k, v in ctx.items() if v is not None})
    logger.bind(**payload).info(f"search {source}: {results_raw} raw results for {query!r}")


def transition_log(resource_id: int, name: str, state: str, reason: str | None = None) -> None:
    log = bind_context(resource_id=resource_id, state=state, reason=reason)
    if reason:
        log.info(f"[Enrichment] {name} -> {state} ({reason})")
    else:
        log.info(f"[Enrichment] {name} -> {state}")
