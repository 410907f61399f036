from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = os.environ.get("CVD2IMG_LOG_DIR")


def _should_log_chunk(record) -> bool:
    """Filter per-chunk copy logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])
    if "chunk" in tags:
        return record["level"].no <= logger.level("TRACE").no
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console logging and optional log files.

    Logging Tiers:
    - ERROR: Stage failures, tool errors
    - SUCCESS/INFO: Stage progress ("Creating system.img disk image")
    - DEBUG: Tool command lines, per-component sizes
    - TRACE: Copy chunk sizes

    Log Files (only when a log directory is configured):
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Log directory (defaults to $CVD2IMG_LOG_DIR, unset = no files)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "cvd2img"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_chunk,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    if log_dir is None and DEFAULT_LOG_DIR:
        log_dir = Path(DEFAULT_LOG_DIR)
    if log_dir is None:
        return logger

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <20} | "
            "{message}"
        ),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <20} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["assembly", "chunk"])
        source: Source component (e.g., "sparse", "gpt", "avbtool")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for pipeline stages with automatic timing.

    Logs stage start, completion and failure with duration. Exceptions are
    re-raised unchanged.

    Example:
        with operation_context("system_image", output="system.img") as log:
            log.debug("Assembling components")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source="pipeline", job_id=job_id, tags=[operation])
        log.debug(f"{operation} started")

        try:
            yield log
            duration = time.time() - start_time
            log.success(f"{operation} completed in {duration:.2f}s")
        except Exception as e:
            duration = time.time() - start_time
            log.bind(error_type=type(e).__name__).error(
                f"{operation} failed after {duration:.2f}s: {e}"
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_sparse() -> Logger:
        """Logger for sparse image detection and conversion."""
        return logger.bind(source="sparse", tags=["sparse"])

    @staticmethod
    def for_assembly(job_id: str | None = None) -> Logger:
        """Logger for disk image assembly."""
        if job_id is None:
            job_id = f"assemble-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="assembly", tags=["assembly"])

    @staticmethod
    def for_partitions() -> Logger:
        """Logger for partition table construction."""
        return logger.bind(source="gpt", tags=["partitions"])

    @staticmethod
    def for_artifacts() -> Logger:
        """Logger for generated partition images."""
        return logger.bind(source="artifacts", tags=["artifacts", "avb"])

    @staticmethod
    def for_tools() -> Logger:
        """Logger for external tool invocations."""
        return logger.bind(source="tools", tags=["tools"])

    @staticmethod
    def for_pipeline() -> Logger:
        """Logger for the top-level image pipeline."""
        return logger.bind(source="pipeline", tags=["pipeline"])
