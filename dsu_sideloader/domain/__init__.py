"""Domain models for DSU installations."""

from __future__ import annotations

from .models import (
    CancellationToken,
    ImagePartition,
    InstallationErrorKind,
    InstallationSource,
    InstallationState,
    InstallationStep,
    MultipleImages,
    Package,
    RemoteURL,
    SingleImage,
    SourceKind,
)


__all__ = [
    "CancellationToken",
    "ImagePartition",
    "InstallationErrorKind",
    "InstallationSource",
    "InstallationState",
    "InstallationStep",
    "MultipleImages",
    "Package",
    "RemoteURL",
    "SingleImage",
    "SourceKind",
]
