"""Progress accounting for partition transfers."""

from __future__ import annotations

from typing import Callable, Optional

from dsu_sideloader.logging import ThrottledLogger, get_logger


ProgressCallback = Callable[[float, str], None]

_throttled_log = ThrottledLogger(
    get_logger(source="progress", tags=["install", "progress"]),
    interval_seconds=2.0,
)


def progress_fraction(bytes_read: int, total_bytes: int) -> float:
    """Convert transferred bytes into a fraction in ``[0, 1]``.

    Returns 0 when either value is 0 (unknown size, or nothing read yet) so
    an unknown total never reports completion.
    """
    if total_bytes <= 0 or bytes_read <= 0:
        return 0.0
    return min(1.0, bytes_read / total_bytes)


def human_size(size_bytes: Optional[int]) -> str:
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


class PartitionProgress:
    """Reports transfer progress of one partition to the host callback."""

    def __init__(
        self,
        partition_name: str,
        total_bytes: int,
        callback: Optional[ProgressCallback] = None,
    ):
        self.partition_name = partition_name
        self.total_bytes = total_bytes
        self.callback = callback
        self.bytes_read = 0

    @property
    def fraction(self) -> float:
        return progress_fraction(self.bytes_read, self.total_bytes)

    def advance(self, chunk_size: int) -> float:
        """Account for ``chunk_size`` more bytes and notify the host."""
        self.bytes_read += chunk_size
        fraction = self.fraction
        if self.callback is not None:
            self.callback(fraction, self.partition_name)
        if self.total_bytes > 0:
            _throttled_log.debug(
                self.partition_name,
                f"{self.partition_name}: {human_size(self.bytes_read)} of "
                f"{human_size(self.total_bytes)} ({fraction * 100:.1f}%)",
            )
        else:
            _throttled_log.debug(
                self.partition_name,
                f"{self.partition_name}: {human_size(self.bytes_read)} written",
            )
        return fraction
