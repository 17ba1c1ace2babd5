from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "DSU_SIDELOADER_LOG_DIR",
        Path.home() / ".local" / "state" / "dsu-sideloader" / "logs",
    )
)

# Note: TRACE level already exists in loguru at level 5 (below DEBUG which is 10)


def _should_log_progress(record) -> bool:
    """Filter per-chunk progress logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "progress" in tags and record["level"].no < logger.level("INFO").no:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_command_output(record) -> bool:
    """Filter raw privileged command output - only show in TRACE mode."""
    message = record["message"].lower()
    tags = record["extra"].get("tags", [])

    # Always log warnings and errors from privileged commands
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "privileged" in tags and ("stdout:" in message or "stderr:" in message):
        return record["level"].no <= logger.level("TRACE").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_progress(record) and _should_log_command_output(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Failed installations, privileged command failures
    - SUCCESS/INFO: Installation phases, partitions installed
    - DEBUG: Detailed diagnostics, command execution, skipped entries
    - TRACE: Ultra-verbose (per-chunk progress, raw command output)

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/dsu-sideloader/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <15}</cyan> | "
            "<blue>{extra[job_id]: <17}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <15} | "
            "{extra[job_id]: <17} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            filter=_combined_filter,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <17} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Ultra-verbose (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <17} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
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
        job_id: Job identifier for tracking an installation
        tags: Tags for filtering (e.g., ["install", "progress"])
        source: Source component (e.g., "installer", "privileged")

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


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_installer(job_id: str | None = None, **details) -> Logger:
        """Logger for installation runs."""
        if job_id is None:
            job_id = "-"
        return logger.bind(
            job_id=job_id, source="installer", tags=["install", "dsu"], **details
        )

    @staticmethod
    def for_privileged() -> Logger:
        """Logger for commands executed with elevated rights."""
        return logger.bind(source="privileged", tags=["privileged", "shell"])

    @staticmethod
    def for_streams() -> Logger:
        """Logger for opening local and remote payload streams."""
        return logger.bind(source="streams", tags=["streams", "io"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, shutdown, config)."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Useful for progress updates that fire once per copied chunk but should
    only be emitted at intervals.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        """
        Initialize throttled logger.

        Args:
            log: Base logger to wrap
            interval_seconds: Minimum seconds between log emissions
        """
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        """Log at DEBUG level, throttled by key."""
        self._throttled_log("DEBUG", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.monotonic()
        last_time = self.last_log_time.get(key)

        if last_time is None or now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Provides methods for logging installation events with consistent
    structure and fields.
    """

    @staticmethod
    def log_installation_started(
        log: Logger, source_kind: str, userdata_size: int, **extra
    ) -> None:
        """Log installation start."""
        log.info(
            "Installation started",
            event_type="installation_started",
            source_kind=source_kind,
            userdata_size=userdata_size,
            **extra,
        )

    @staticmethod
    def log_partition_installed(
        log: Logger, partition: str, size_bytes: int, **extra
    ) -> None:
        """Log a partition written by the privileged tool."""
        log.info(
            "Partition {partition} installed",
            event_type="partition_installed",
            partition=partition,
            size_bytes=size_bytes,
            **extra,
        )

    @staticmethod
    def log_installation_finished(
        log: Logger, state: str, duration_seconds: float, **extra
    ) -> None:
        """Log the terminal state of an installation."""
        log.info(
            "Installation finished: {state}",
            event_type="installation_finished",
            state=state,
            duration_seconds=round(duration_seconds, 2),
            **extra,
        )
