"""Logging setup for applications embedding the memory index."""

import os
import sys
from datetime import datetime

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{line} | {function} | {message}"


def _only_hybridmem(record) -> bool:
    return (record["name"] or "").startswith("hybridmem")


def init_logger(
    log_dir: str | None = None,
    level: str | None = None,
    log_to_console: bool = True,
    only_hybridmem: bool = False,
) -> list[int]:
    """Replace loguru's default handler with hybridmem's sinks.

    Library modules only emit through `loguru.logger`; call this once from the
    embedding application to decide where those records go.

    Args:
        log_dir: Directory for a daily-rotated log file; None disables file logging
        level: Minimum level, defaults to `HYBRIDMEM_LOG_LEVEL` or INFO
        log_to_console: Whether to also log to stdout
        only_hybridmem: Drop records emitted by other packages

    Returns:
        Handler ids, for `logger.remove()`
    """
    level = (level or os.getenv("HYBRIDMEM_LOG_LEVEL") or "INFO").upper()
    record_filter = _only_hybridmem if only_hybridmem else None
    logger.remove()

    handler_ids = []
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        # Dashes instead of colons for Windows compatibility
        current_ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        handler_ids.append(
            logger.add(
                os.path.join(log_dir, f"hybridmem_{current_ts}.log"),
                level=level,
                rotation="00:00",
                retention="7 days",
                compression="zip",
                encoding="utf-8",
                format=LOG_FORMAT,
                filter=record_filter,
            ),
        )

    if log_to_console:
        handler_ids.append(logger.add(sink=sys.stdout, level=level, format=LOG_FORMAT, filter=record_filter, colorize=True))
    return handler_ids
