"""Custom exceptions for DSU installation.

Every exception carries the ``InstallationErrorKind`` reported to the host and
a free-text detail (usually the offending partition name).

Exception Hierarchy:
    InstallationError (base)
        ├── AlreadyRunningError
        ├── RequiresDiscardError
        ├── PartitionCreationError
        ├── SourceUnavailableError
        ├── InvalidPackageError
        ├── StagingError
        └── EnableError

Usage:
    from dsu_sideloader.installer.exceptions import PartitionCreationError

    if not operator.install_partition_image(staged_path, "system"):
        raise PartitionCreationError("system")
"""

from __future__ import annotations

from dsu_sideloader.domain import InstallationErrorKind


class InstallationError(Exception):
    """Base exception for all installation failures."""

    kind: InstallationErrorKind = InstallationErrorKind.CREATE_PARTITION

    def __init__(self, message: str, detail: str = ""):
        self.detail = detail
        super().__init__(message)


class AlreadyRunningError(InstallationError):
    """A dynamic OS image is already booted."""

    kind = InstallationErrorKind.ALREADY_RUNNING_DYN_OS

    def __init__(self):
        super().__init__("A dynamic system image is already running")


class RequiresDiscardError(InstallationError):
    """A previous installation must be discarded first."""

    kind = InstallationErrorKind.REQUIRES_DISCARD_DSU

    def __init__(self, installation_dir: str = ""):
        self.installation_dir = installation_dir
        msg = "A previous DSU installation must be discarded first"
        if installation_dir:
            msg += f" ({installation_dir} exists)"
        super().__init__(msg)


class PartitionCreationError(InstallationError):
    """Privileged creation or write of a partition failed."""

    kind = InstallationErrorKind.CREATE_PARTITION

    def __init__(self, partition_name: str):
        self.partition_name = partition_name
        super().__init__(
            f"Failed to install {partition_name} partition", detail=partition_name
        )


class SourceUnavailableError(InstallationError):
    """A source locator could not be opened."""

    kind = InstallationErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, locator: str, reason: str = ""):
        self.locator = locator
        self.reason = reason
        msg = f"Cannot open {locator}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, detail=locator)


class InvalidPackageError(InstallationError):
    """The DSU package is not a readable zip stream."""

    kind = InstallationErrorKind.INVALID_PACKAGE

    def __init__(self, reason: str, entry_name: str = ""):
        self.reason = reason
        self.entry_name = entry_name
        msg = f"Invalid DSU package: {reason}"
        if entry_name:
            msg += f" (entry {entry_name})"
        super().__init__(msg, detail=entry_name)


class StagingError(InstallationError):
    """The staging file for a partition could not be written."""

    kind = InstallationErrorKind.STAGING_FAILED

    def __init__(self, partition_name: str, reason: str = ""):
        self.partition_name = partition_name
        self.reason = reason
        msg = f"Failed to stage {partition_name} partition"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, detail=partition_name)


class EnableError(InstallationError):
    """The installed dynamic OS could not be enabled."""

    kind = InstallationErrorKind.ENABLE_FAILED

    def __init__(self):
        super().__init__("Failed to enable the installed dynamic system")
