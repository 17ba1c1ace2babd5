"""
Pytest configuration and shared fixtures for dsu-sideloader tests.

This module provides fakes for the installer's collaborators (privileged
operator, property reader, stream provider) and helpers for building zip
packages in memory.
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from dsu_sideloader.domain import CancellationToken


# ==============================================================================
# Collaborator Fakes
# ==============================================================================


class FakeOperator:
    """Privileged operator that records every call.

    Results are configurable per operation; ``install_results`` maps a
    partition name to the result of ``install_partition_image``.
    """

    def __init__(
        self,
        *,
        create_ok: bool = True,
        install_results: Optional[Dict[str, bool]] = None,
        enable_ok: bool = True,
        disable_ok: bool = True,
        on_install: Optional[Callable[[str], None]] = None,
    ):
        self.calls: List[Tuple] = []
        self.create_ok = create_ok
        self.install_results = install_results or {}
        self.enable_ok = enable_ok
        self.disable_ok = disable_ok
        self.on_install = on_install
        self.installed: Dict[str, bytes] = {}
        self.staged_paths: Dict[str, Path] = {}

    def set_dynamic_partition_property(self) -> bool:
        self.calls.append(("set_dynamic_partition_property",))
        return True

    def force_stop_conflicting_component(self) -> bool:
        self.calls.append(("force_stop_conflicting_component",))
        return True

    def create_partition(self, partition_name: str, size_bytes: int) -> bool:
        self.calls.append(("create_partition", partition_name, size_bytes))
        return self.create_ok

    def install_partition_image(self, staged_path: Path, partition_name: str) -> bool:
        self.calls.append(("install_partition_image", partition_name))
        self.staged_paths[partition_name] = Path(staged_path)
        self.installed[partition_name] = Path(staged_path).read_bytes()
        if self.on_install:
            self.on_install(partition_name)
        return self.install_results.get(partition_name, True)

    def enable_dynamic_os(self) -> bool:
        self.calls.append(("enable_dynamic_os",))
        return self.enable_ok

    def disable_dynamic_os(self) -> bool:
        self.calls.append(("disable_dynamic_os",))
        return self.disable_ok

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def count(self, name: str) -> int:
        return self.call_names().count(name)


class FakePropertyReader:
    def __init__(self, running: bool = False):
        self.running = running

    def is_dynamic_os_image_running(self) -> bool:
        return self.running


class FakeStreamProvider:
    """Serves in-memory payloads keyed by locator."""

    def __init__(self, payloads: Optional[Dict[str, bytes]] = None):
        self.payloads = dict(payloads or {})
        self.opened: List[str] = []
        self.stream_factory: Dict[str, Callable[[bytes], io.BufferedIOBase]] = {}

    def open_stream(self, locator: str):
        self.opened.append(locator)
        if locator not in self.payloads:
            raise FileNotFoundError(f"No such file: {locator}")
        factory = self.stream_factory.get(locator, io.BytesIO)
        return factory(self.payloads[locator])


class CancellingStream(io.BytesIO):
    """BytesIO that sets a cancellation token after ``after_reads`` reads."""

    def __init__(self, data: bytes, token: CancellationToken, after_reads: int = 1):
        super().__init__(data)
        self.token = token
        self.after_reads = after_reads
        self.reads = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.reads += 1
        if self.reads >= self.after_reads:
            self.token.cancel()
        return chunk


class TrickleStream(io.RawIOBase):
    """Non-seekable stream returning at most ``step`` bytes per read."""

    def __init__(self, data: bytes, step: int = 7):
        super().__init__()
        self._data = data
        self._position = 0
        self.step = step

    def readable(self) -> bool:
        return True

    def read(self, size=-1):
        if size is None or size < 0:
            size = len(self._data)
        size = min(size, self.step)
        chunk = self._data[self._position : self._position + size]
        self._position += len(chunk)
        return chunk


class _NonSeekableSink:
    """Write-only target that makes zipfile emit data descriptors."""

    def __init__(self):
        self.buffer = io.BytesIO()

    def write(self, data):
        return self.buffer.write(data)

    def flush(self):
        pass


def build_zip(
    entries: Iterable[Tuple[str, bytes]],
    *,
    compression: int = zipfile.ZIP_STORED,
    streamed: bool = False,
    force_zip64: bool = False,
) -> bytes:
    """Build a zip archive in memory.

    Args:
        entries: (name, data) pairs in archive order
        compression: zipfile compression constant
        streamed: Write as to a non-seekable pipe (sizes in data descriptors)
        force_zip64: Write zip64 extra fields (and zip64 data descriptors)
    """
    sink = _NonSeekableSink() if streamed else None
    target = sink or io.BytesIO()
    with zipfile.ZipFile(target, "w", compression=compression) as archive:
        for name, data in entries:
            if force_zip64:
                with archive.open(name, "w", force_zip64=True) as dest:
                    dest.write(data)
            else:
                archive.writestr(name, data)
    return sink.buffer.getvalue() if sink else target.getvalue()


def payload(size: int, seed: int = 0) -> bytes:
    """Deterministic, mildly compressible test payload."""
    pattern = bytes((seed + i * 7) % 251 for i in range(997))
    return (pattern * (size // len(pattern) + 1))[:size]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def cancel_token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def fake_operator() -> FakeOperator:
    return FakeOperator()


@pytest.fixture
def staging_dir(tmp_path) -> Path:
    return tmp_path / "staging"


@pytest.fixture
def installation_dir(tmp_path) -> Path:
    """Path of the stale-installation marker; absent unless a test creates it."""
    return tmp_path / "data" / "gsi"
