"""Interfaces of the collaborators the installer depends on."""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Protocol


class PrivilegedOperator(Protocol):
    """Operations on the partition table and DSU state needing elevated rights.

    Calls are blocking. Failures are reported through the return value and
    are never retried by the installer.
    """

    def set_dynamic_partition_property(self) -> bool: ...

    def force_stop_conflicting_component(self) -> bool: ...

    def create_partition(self, partition_name: str, size_bytes: int) -> bool: ...

    def install_partition_image(self, staged_path: Path, partition_name: str) -> bool: ...

    def enable_dynamic_os(self) -> bool: ...

    def disable_dynamic_os(self) -> bool: ...


class SystemPropertyReader(Protocol):
    def is_dynamic_os_image_running(self) -> bool: ...


class StreamProvider(Protocol):
    """Resolves opaque locators into readable binary streams.

    Returned streams are used as context managers and closed after use.
    """

    def open_stream(self, locator: str) -> BinaryIO: ...
