"""Installation of the partition images inside a zip-packaged DSU."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import BinaryIO, Callable

from dsu_sideloader.domain import CancellationToken
from dsu_sideloader.logging import get_logger

from .archive import StreamingZipReader
from .policy import is_partition_supported
from .writer import PartitionWriter


log = get_logger(source="extractor", tags=["install", "package"])

IMAGE_SUFFIX = ".img"


def partition_name_for_entry(entry_name: str) -> str | None:
    """Map ``system.img`` to ``system``; None for non-image entries.

    Directory components are dropped, so ``images/vendor.img`` targets
    ``vendor``.
    """
    if entry_name.endswith("/") or not entry_name.endswith(IMAGE_SUFFIX):
        return None
    return PurePosixPath(entry_name).name[: -len(IMAGE_SUFFIX)]


class PackageStreamExtractor:
    """Streams eligible ``<partition>.img`` entries of a package to the writer.

    Entries are handled strictly in archive order, one at a time.
    """

    def __init__(
        self,
        writer: PartitionWriter,
        cancel_token: CancellationToken,
        is_supported: Callable[[str], bool] = is_partition_supported,
    ):
        self.writer = writer
        self.cancel_token = cancel_token
        self.is_supported = is_supported

    def extract(self, source: BinaryIO) -> bool:
        """Install every supported image in the package.

        Returns:
            True when the whole archive was processed, False when
            cancellation stopped it early.

        Raises:
            InvalidPackageError: If the stream is not a readable zip
            PartitionCreationError: If a partition fails to install
        """
        reader = StreamingZipReader(source, chunk_size=self.writer.buffer_size)
        for entry, body in reader:
            partition_name = partition_name_for_entry(entry.name)
            if partition_name is not None and self.is_supported(partition_name):
                self.writer.write(partition_name, body, entry.file_size)
            else:
                log.debug(f"{entry.name} installation is not supported, skip it.")
            if self.cancel_token.is_cancelled:
                log.info(f"Package extraction cancelled after {entry.name}")
                return False
        return True
