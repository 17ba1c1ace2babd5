"""Domain model for DSU installations.

Installation sources are a closed set of frozen dataclasses. The orchestrator
dispatches on the concrete type, so every variant must be handled wherever an
``InstallationSource`` is consumed.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union


# ==============================================================================
# Installation Sources
# ==============================================================================


class SourceKind(Enum):
    """Kind of payload an installation reads from."""

    SINGLE_IMAGE = "single_image"  # One raw system image
    MULTIPLE_IMAGES = "multiple_images"  # One image per partition
    PACKAGE = "package"  # Zip bundle of <partition>.img entries
    REMOTE_URL = "remote_url"  # Zip bundle fetched over HTTP(S)


@dataclass(frozen=True)
class ImagePartition:
    """One partition payload of a multi-image installation."""

    partition_name: str  # e.g., "system", "vendor"
    locator: str  # Opaque reference resolved by the stream provider
    byte_size: int = 0  # 0 when unknown; progress stays indeterminate


@dataclass(frozen=True)
class SingleImage:
    """A single raw image installed as the ``system`` partition."""

    locator: str
    byte_size: int = 0

    @property
    def kind(self) -> SourceKind:
        return SourceKind.SINGLE_IMAGE


@dataclass(frozen=True)
class MultipleImages:
    """An ordered list of partition images."""

    images: Tuple[ImagePartition, ...]

    def __post_init__(self) -> None:
        # Accept any iterable but store an immutable tuple
        object.__setattr__(self, "images", tuple(self.images))

    @property
    def kind(self) -> SourceKind:
        return SourceKind.MULTIPLE_IMAGES

    @property
    def partition_names(self) -> list[str]:
        return [image.partition_name for image in self.images]


@dataclass(frozen=True)
class Package:
    """A zip-packaged DSU bundle reachable through the stream provider."""

    locator: str

    @property
    def kind(self) -> SourceKind:
        return SourceKind.PACKAGE


@dataclass(frozen=True)
class RemoteURL:
    """A zip-packaged DSU bundle downloaded while it is installed."""

    locator: str

    @property
    def kind(self) -> SourceKind:
        return SourceKind.REMOTE_URL


InstallationSource = Union[SingleImage, MultipleImages, Package, RemoteURL]


# ==============================================================================
# Installation Progress
# ==============================================================================


class InstallationStep(Enum):
    """Coarse phase reported to the host while installing.

    Used for display only. Control flow never depends on it.
    """

    PREFLIGHT_CHECKS = "preflight_checks"
    CREATING_USERDATA = "creating_userdata"
    INSTALLING_PARTITION = "installing_partition"
    ENABLING = "enabling"


class InstallationErrorKind(Enum):
    """Terminal failure reported through ``on_error``."""

    ALREADY_RUNNING_DYN_OS = "already_running_dyn_os"
    REQUIRES_DISCARD_DSU = "requires_discard_dsu"
    CREATE_PARTITION = "create_partition"
    SOURCE_UNAVAILABLE = "source_unavailable"
    INVALID_PACKAGE = "invalid_package"
    STAGING_FAILED = "staging_failed"
    ENABLE_FAILED = "enable_failed"


class InstallationState(Enum):
    """State of the installation state machine."""

    IDLE = "idle"
    PREFLIGHT_CHECKING = "preflight_checking"
    ALLOCATING_USERDATA = "allocating_userdata"
    INSTALLING_SOURCE = "installing_source"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            InstallationState.SUCCEEDED,
            InstallationState.FAILED,
            InstallationState.CANCELLED,
        )


# ==============================================================================
# Cancellation
# ==============================================================================


class CancellationToken:
    """Cooperative cancellation flag shared between the host and the installer.

    May be set from any thread. Once set it stays set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
