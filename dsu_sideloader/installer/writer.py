"""Staging and privileged installation of a single partition image."""

from __future__ import annotations

from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import BinaryIO, Callable, Optional

from dsu_sideloader.config.settings import DEFAULT_BUFFER_SIZE
from dsu_sideloader.domain import CancellationToken, InstallationStep
from dsu_sideloader.logging import EventLogger, get_logger
from dsu_sideloader.privileged.protocols import PrivilegedOperator

from .exceptions import PartitionCreationError, SourceUnavailableError, StagingError
from .progress import PartitionProgress, ProgressCallback, human_size


log = get_logger(source="writer", tags=["install", "partition"])


def is_plain_partition_name(partition_name: str) -> bool:
    """True if the name cannot address anything outside the staging directory."""
    if partition_name in ("", ".", ".."):
        return False
    return (
        PurePosixPath(partition_name).name == partition_name
        and PureWindowsPath(partition_name).name == partition_name
    )


def staged_image_path(staging_dir: Path, partition_name: str) -> Path:
    if not is_plain_partition_name(partition_name):
        raise ValueError(f"Invalid partition name: {partition_name!r}")
    return Path(staging_dir) / f"{partition_name}.img"


class PartitionWriter:
    """Copies one partition payload to a staging file and installs it.

    The copy polls ``cancel_token`` after every chunk. A cancelled copy
    returns without calling the privileged tool and leaves the partial
    staging file behind, as does a failed privileged write.
    """

    def __init__(
        self,
        operator: PrivilegedOperator,
        staging_dir: Path,
        cancel_token: CancellationToken,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        on_partition_created: Optional[Callable[[str], None]] = None,
        on_step_changed: Optional[Callable[[InstallationStep], None]] = None,
    ):
        self.operator = operator
        self.staging_dir = Path(staging_dir)
        self.cancel_token = cancel_token
        self.buffer_size = buffer_size
        self.on_progress = on_progress
        self.on_partition_created = on_partition_created
        self.on_step_changed = on_step_changed

    def write(self, partition_name: str, source: BinaryIO, declared_size: int) -> bool:
        """Install ``source`` as ``partition_name``.

        Args:
            partition_name: Target partition, already accepted by the policy
            source: Readable binary stream positioned at the image start
            declared_size: Expected byte count, 0 when unknown

        Returns:
            True once the partition is installed, False if the copy was
            cancelled before the privileged write.

        Raises:
            StagingError: If the name is not a plain file name or the
                staging file cannot be written
            SourceUnavailableError: If reading ``source`` fails
            PartitionCreationError: If the privileged write fails
        """
        if not is_plain_partition_name(partition_name):
            raise StagingError(partition_name, "invalid partition name")
        if self.on_partition_created:
            self.on_partition_created(partition_name)
        if self.on_step_changed:
            self.on_step_changed(InstallationStep.INSTALLING_PARTITION)

        staged_path = staged_image_path(self.staging_dir, partition_name)
        progress = PartitionProgress(partition_name, declared_size, self.on_progress)
        log.info(
            f"Staging {partition_name} ({human_size(declared_size) if declared_size > 0 else 'unknown size'})"
        )

        if not self._copy_to_staging(source, staged_path, progress):
            log.info(
                f"Installation of {partition_name} cancelled after {human_size(progress.bytes_read)}"
            )
            return False

        if not self.operator.install_partition_image(staged_path, partition_name):
            log.error(f"Failed to install {partition_name} partition")
            raise PartitionCreationError(partition_name)

        staged_path.unlink(missing_ok=True)
        EventLogger.log_partition_installed(log, partition_name, progress.bytes_read)
        return True

    def _copy_to_staging(
        self, source: BinaryIO, staged_path: Path, progress: PartitionProgress
    ) -> bool:
        partition_name = progress.partition_name
        try:
            staged_path.parent.mkdir(parents=True, exist_ok=True)
            with open(staged_path, "wb") as output:
                while True:
                    chunk = self._read_chunk(source, partition_name)
                    if not chunk:
                        return True
                    output.write(chunk)
                    progress.advance(len(chunk))
                    if self.cancel_token.is_cancelled:
                        return False
        except OSError as error:
            raise StagingError(partition_name, error.strerror or str(error)) from error

    def _read_chunk(self, source: BinaryIO, partition_name: str) -> bytes:
        try:
            return source.read(self.buffer_size)
        except OSError as error:
            raise SourceUnavailableError(
                partition_name, f"read failed: {error.strerror or error}"
            ) from error
