"""DSU installation: partition policy, staging writer, package extraction
and the installation state machine.

Main Entry Point:
    - InstallationOrchestrator.run(): install a source end-to-end

Components:
    - is_partition_supported(): deny-list of partitions DSU must not touch
    - progress_fraction(): bytes transferred -> fraction in [0, 1]
    - PartitionWriter: stage one partition image and install it
    - PackageStreamExtractor: install the images inside a zip package
    - StreamingZipReader: iterate zip entries without seeking
"""

from .archive import ArchiveEntry, StreamingZipReader
from .exceptions import (
    AlreadyRunningError,
    EnableError,
    InstallationError,
    InvalidPackageError,
    PartitionCreationError,
    RequiresDiscardError,
    SourceUnavailableError,
    StagingError,
)
from .extractor import PackageStreamExtractor, partition_name_for_entry
from .orchestrator import InstallationCallbacks, InstallationOrchestrator
from .policy import UNSUPPORTED_PARTITIONS, is_partition_supported
from .progress import PartitionProgress, progress_fraction
from .writer import PartitionWriter, staged_image_path


__all__ = [
    "AlreadyRunningError",
    "ArchiveEntry",
    "EnableError",
    "InstallationCallbacks",
    "InstallationError",
    "InstallationOrchestrator",
    "InvalidPackageError",
    "PackageStreamExtractor",
    "PartitionCreationError",
    "PartitionProgress",
    "PartitionWriter",
    "RequiresDiscardError",
    "SourceUnavailableError",
    "StagingError",
    "StreamingZipReader",
    "UNSUPPORTED_PARTITIONS",
    "is_partition_supported",
    "partition_name_for_entry",
    "progress_fraction",
    "staged_image_path",
]
