"""Privileged operations through ``su`` and the on-device ``gsi_tool``.

Each operation is a single ``su -c "<command>"`` invocation. A command counts
as failed when it exits non-zero, when the binary cannot be executed, or when
it outlives the optional timeout.
"""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from dsu_sideloader.config import settings
from dsu_sideloader.logging import LoggerFactory


log = LoggerFactory.for_privileged()

DYNAMIC_SYSTEM_FLAG = "persist.sys.fflag.override.settings_dynamic_system"
DYNAMIC_SYSTEM_PACKAGE = "com.android.dynsystem"
IMAGE_RUNNING_PROPERTY = "gsid.image_running"


def run_command(command: Sequence[str], timeout: Optional[float] = None) -> bool:
    """Run a command and report whether it exited successfully."""
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command),
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        log.error(f"Command not found: {command[0]}")
        return False
    except subprocess.TimeoutExpired:
        log.error(f"Command timed out after {timeout}s: {' '.join(command)}")
        return False
    if result.stdout and result.stdout.strip():
        log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and result.stderr.strip():
        log.trace(f"stderr: {result.stderr.strip()}")
    if result.returncode != 0:
        message = (result.stderr or result.stdout or "").strip() or "Command failed"
        log.error(
            f"Command failed ({' '.join(command)}) with code {result.returncode}: {message}"
        )
        return False
    return True


class ShellPrivilegedOperator:
    """Runs DSU partition operations as root through ``su``."""

    def __init__(
        self,
        su_binary: Optional[str] = None,
        gsi_tool: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.su_binary = su_binary or settings.get_setting("su_binary", "su")
        self.gsi_tool = gsi_tool or settings.get_setting("gsi_tool_binary", "gsi_tool")
        if timeout is None:
            timeout = settings.get_optional_float("privileged_timeout_seconds")
        self.timeout = timeout

    def _su(self, *args: str) -> bool:
        command_line = " ".join(shlex.quote(str(arg)) for arg in args)
        return run_command([self.su_binary, "-c", command_line], timeout=self.timeout)

    def set_dynamic_partition_property(self) -> bool:
        ok = self._su("setprop", DYNAMIC_SYSTEM_FLAG, "true")
        if not ok:
            log.warning("Unable to enable the dynamic system feature flag")
        return ok

    def force_stop_conflicting_component(self) -> bool:
        ok = self._su("am", "force-stop", DYNAMIC_SYSTEM_PACKAGE)
        if not ok:
            log.warning(f"Unable to force-stop {DYNAMIC_SYSTEM_PACKAGE}")
        return ok

    def create_partition(self, partition_name: str, size_bytes: int) -> bool:
        return self._su(self.gsi_tool, "install", "-s", str(size_bytes), partition_name)

    def install_partition_image(self, staged_path: Path, partition_name: str) -> bool:
        return self._su(
            self.gsi_tool, "install", str(Path(staged_path).resolve()), partition_name
        )

    def enable_dynamic_os(self) -> bool:
        return self._su(self.gsi_tool, "enable")

    def disable_dynamic_os(self) -> bool:
        return self._su(self.gsi_tool, "disable")


class GetpropPropertyReader:
    """Reads system properties with ``getprop``."""

    def __init__(self, getprop: str = "getprop", timeout: Optional[float] = 10):
        self.getprop = getprop
        self.timeout = timeout

    def get_property(self, name: str) -> str:
        try:
            result = subprocess.run(
                [self.getprop, name],
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as error:
            log.warning(f"Unable to read property {name}: {error}")
            return ""
        if result.returncode != 0:
            return ""
        return result.stdout.strip()

    def is_dynamic_os_image_running(self) -> bool:
        return self.get_property(IMAGE_RUNNING_PROPERTY).lower() in ("1", "true")
