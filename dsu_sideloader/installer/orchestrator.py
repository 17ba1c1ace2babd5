"""DSU installation state machine.

States:
    IDLE -> PREFLIGHT_CHECKING -> ALLOCATING_USERDATA -> INSTALLING_SOURCE
         -> FINALIZING -> SUCCEEDED

    Any step may end in FAILED (an ``InstallationError``) or CANCELLED (the
    cancellation token was set). Outcomes are reported through
    ``InstallationCallbacks``; ``run()`` itself returns nothing.

Cancellation policy:
    Once userdata has been allocated, a cancelled run always disables the
    partially installed dynamic system before ending in CANCELLED, whatever
    the source kind. A run cancelled before it starts touches nothing.

Staging files:
    Staging files left behind by a failed or cancelled run are removed at the
    end of ``run()`` unless ``keep_staged_files`` is set.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from dsu_sideloader.config import settings
from dsu_sideloader.domain import (
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
)
from dsu_sideloader.logging import EventLogger, LoggerFactory
from dsu_sideloader.privileged.protocols import (
    PrivilegedOperator,
    StreamProvider,
    SystemPropertyReader,
)

from .exceptions import (
    AlreadyRunningError,
    EnableError,
    InstallationError,
    PartitionCreationError,
    RequiresDiscardError,
    SourceUnavailableError,
)
from .extractor import PackageStreamExtractor
from .policy import is_partition_supported
from .progress import human_size
from .writer import PartitionWriter, staged_image_path


USERDATA_PARTITION = "userdata"
SYSTEM_PARTITION = "system"


def _noop(*_args) -> None:
    return None


@dataclass
class InstallationCallbacks:
    """Host notifications. All callbacks run on the installing thread."""

    on_error: Callable[[InstallationErrorKind, str], None] = _noop
    on_progress: Callable[[float, str], None] = _noop
    on_partition_created: Callable[[str], None] = _noop
    on_step_changed: Callable[[InstallationStep], None] = _noop
    on_success: Callable[[], None] = _noop


class InstallationOrchestrator:
    """Installs one ``InstallationSource`` as a dynamic system update."""

    def __init__(
        self,
        userdata_size: int,
        source: InstallationSource,
        cancel_token: CancellationToken,
        *,
        operator: PrivilegedOperator,
        property_reader: SystemPropertyReader,
        stream_provider: StreamProvider,
        callbacks: Optional[InstallationCallbacks] = None,
        staging_dir: Optional[Path] = None,
        installation_dir: Optional[Path] = None,
        buffer_size: Optional[int] = None,
        keep_staged_files: Optional[bool] = None,
        is_supported: Callable[[str], bool] = is_partition_supported,
    ):
        self.userdata_size = userdata_size
        self.source = source
        self.cancel_token = cancel_token
        self.operator = operator
        self.property_reader = property_reader
        self.stream_provider = stream_provider
        self.callbacks = callbacks or InstallationCallbacks()
        self.staging_dir = Path(staging_dir or settings.get_setting("staging_dir"))
        self.installation_dir = Path(
            installation_dir or settings.get_setting("installation_dir")
        )
        if keep_staged_files is None:
            keep_staged_files = settings.get_bool("keep_staged_files")
        self.keep_staged_files = keep_staged_files
        self.is_supported = is_supported

        self.state = InstallationState.IDLE
        self.job_id = f"dsu-{uuid.uuid4().hex[:8]}"
        self.log = LoggerFactory.for_installer(self.job_id)
        self._staged_partitions: list[str] = []

        self.writer = PartitionWriter(
            operator,
            self.staging_dir,
            cancel_token,
            buffer_size=buffer_size or settings.get_int("buffer_size", 8192),
            on_progress=self.callbacks.on_progress,
            on_partition_created=self._partition_created,
            on_step_changed=self.callbacks.on_step_changed,
        )
        self.extractor = PackageStreamExtractor(self.writer, cancel_token, is_supported)

    def run(self) -> None:
        """Run the installation to a terminal state."""
        if self.state is not InstallationState.IDLE:
            raise RuntimeError(f"Installation already ran (state: {self.state.value})")
        start_time = time.monotonic()
        EventLogger.log_installation_started(
            self.log, self.source.kind.value, self.userdata_size
        )
        try:
            self._install()
        except InstallationError as error:
            self._fail(error)
        except Exception:
            self._transition(InstallationState.FAILED)
            self.log.exception("Installation aborted by an unexpected error")
            raise
        finally:
            if self.state in (InstallationState.FAILED, InstallationState.CANCELLED):
                self._cleanup_staging()
            EventLogger.log_installation_finished(
                self.log, self.state.value, time.monotonic() - start_time
            )

    def _install(self) -> None:
        if self.cancel_token.is_cancelled:
            self.log.info("Installation cancelled before it started")
            self._transition(InstallationState.CANCELLED)
            return

        self._preflight()
        self._allocate_userdata()

        self._transition(InstallationState.INSTALLING_SOURCE)
        completed = not self.cancel_token.is_cancelled and self._install_source(
            self.source
        )
        if not completed or self.cancel_token.is_cancelled:
            self._rollback()
            return

        self._finalize()

    def _preflight(self) -> None:
        self._transition(InstallationState.PREFLIGHT_CHECKING)
        self.callbacks.on_step_changed(InstallationStep.PREFLIGHT_CHECKS)
        self.operator.set_dynamic_partition_property()
        if self.property_reader.is_dynamic_os_image_running():
            raise AlreadyRunningError()
        if self.installation_dir.exists():
            raise RequiresDiscardError(str(self.installation_dir))
        self.operator.force_stop_conflicting_component()

    def _allocate_userdata(self) -> None:
        self._transition(InstallationState.ALLOCATING_USERDATA)
        self.callbacks.on_step_changed(InstallationStep.CREATING_USERDATA)
        self.log.info(f"Creating userdata partition ({human_size(self.userdata_size)})")
        if not self.operator.create_partition(USERDATA_PARTITION, self.userdata_size):
            raise PartitionCreationError(USERDATA_PARTITION)

    def _install_source(self, source: InstallationSource) -> bool:
        """Install the source payload. Returns False if cancelled."""
        if isinstance(source, SingleImage):
            with self._open(source.locator) as stream:
                return self.writer.write(SYSTEM_PARTITION, stream, source.byte_size)
        if isinstance(source, MultipleImages):
            return self._install_images(source.images)
        if isinstance(source, Package):
            self.log.info(f"Installing DSU package {source.locator}")
            with self._open(source.locator) as stream:
                return self.extractor.extract(stream)
        if isinstance(source, RemoteURL):
            self.log.info(f"Installing DSU package from {source.locator}")
            with self._open(source.locator) as stream:
                return self.extractor.extract(stream)
        raise TypeError(f"Unsupported installation source: {type(source).__name__}")

    def _install_images(self, images: tuple[ImagePartition, ...]) -> bool:
        for image in images:
            if self.is_supported(image.partition_name):
                with self._open(image.locator) as stream:
                    self.writer.write(image.partition_name, stream, image.byte_size)
            else:
                self.log.debug(
                    f"{image.partition_name} installation is not supported, skip it."
                )
            if self.cancel_token.is_cancelled:
                return False
        return True

    def _open(self, locator: str) -> BinaryIO:
        try:
            return self.stream_provider.open_stream(locator)
        except OSError as error:
            raise SourceUnavailableError(locator, str(error)) from error

    def _finalize(self) -> None:
        self._transition(InstallationState.FINALIZING)
        self.callbacks.on_step_changed(InstallationStep.ENABLING)
        if not self.operator.enable_dynamic_os():
            raise EnableError()
        self._transition(InstallationState.SUCCEEDED)
        self.log.success("Installation finished successfully.")
        self.callbacks.on_success()

    def _rollback(self) -> None:
        self.log.warning("Installation cancelled, disabling the dynamic system")
        if not self.operator.disable_dynamic_os():
            self.log.error("Failed to disable the partially installed dynamic system")
        self._transition(InstallationState.CANCELLED)

    def _fail(self, error: InstallationError) -> None:
        self._transition(InstallationState.FAILED)
        self.log.error(f"Installation failed: {error}")
        self.callbacks.on_error(error.kind, error.detail)

    def _transition(self, state: InstallationState) -> None:
        self.log.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def _partition_created(self, partition_name: str) -> None:
        self._staged_partitions.append(partition_name)
        self.callbacks.on_partition_created(partition_name)

    def _cleanup_staging(self) -> None:
        if self.keep_staged_files:
            if self._staged_partitions:
                self.log.info(f"Keeping staging files in {self.staging_dir}")
            return
        for partition_name in self._staged_partitions:
            path = staged_image_path(self.staging_dir, partition_name)
            try:
                path.unlink(missing_ok=True)
            except OSError as error:
                self.log.warning(f"Unable to remove staging file {path}: {error}")
