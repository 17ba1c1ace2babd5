"""Tests for the su/gsi_tool privileged operator and getprop reader."""

import subprocess
from unittest.mock import Mock

import pytest

from dsu_sideloader.config import settings
from dsu_sideloader.privileged.shell import (
    DYNAMIC_SYSTEM_FLAG,
    DYNAMIC_SYSTEM_PACKAGE,
    IMAGE_RUNNING_PROPERTY,
    GetpropPropertyReader,
    ShellPrivilegedOperator,
    run_command,
)


@pytest.fixture
def mock_subprocess_run(mocker):
    return mocker.patch(
        "dsu_sideloader.privileged.shell.subprocess.run",
        return_value=Mock(returncode=0, stdout="", stderr=""),
    )


@pytest.fixture
def operator():
    return ShellPrivilegedOperator(su_binary="su", gsi_tool="gsi_tool", timeout=60)


def su_command(mock_run):
    """Return the shell command line passed to ``su -c``."""
    args = mock_run.call_args.args[0]
    assert args[:2] == ["su", "-c"]
    return args[2]


class TestRunCommand:
    """Tests for run_command()."""

    def test_successful_command(self, mock_subprocess_run):
        assert run_command(["echo", "ok"]) is True
        mock_subprocess_run.assert_called_once_with(
            ["echo", "ok"], text=True, capture_output=True, timeout=None
        )

    def test_non_zero_exit_fails(self, mock_subprocess_run):
        mock_subprocess_run.return_value = Mock(returncode=1, stdout="", stderr="denied")
        assert run_command(["false"]) is False

    def test_missing_binary_fails(self, mock_subprocess_run):
        mock_subprocess_run.side_effect = FileNotFoundError("su")
        assert run_command(["su", "-c", "id"]) is False

    def test_timeout_fails(self, mock_subprocess_run):
        """Test that a hung command counts as failed."""
        mock_subprocess_run.side_effect = subprocess.TimeoutExpired(["sleep"], 5)
        assert run_command(["sleep", "100"], timeout=5) is False
        assert mock_subprocess_run.call_args.kwargs["timeout"] == 5


class TestShellPrivilegedOperator:
    """Tests for the gsi_tool command lines."""

    def test_set_dynamic_partition_property(self, operator, mock_subprocess_run):
        assert operator.set_dynamic_partition_property() is True
        assert su_command(mock_subprocess_run) == f"setprop {DYNAMIC_SYSTEM_FLAG} true"

    def test_force_stop(self, operator, mock_subprocess_run):
        assert operator.force_stop_conflicting_component() is True
        assert su_command(mock_subprocess_run) == f"am force-stop {DYNAMIC_SYSTEM_PACKAGE}"

    def test_create_partition(self, operator, mock_subprocess_run):
        assert operator.create_partition("userdata", 8589934592) is True
        assert su_command(mock_subprocess_run) == "gsi_tool install -s 8589934592 userdata"

    def test_install_partition_image_uses_absolute_path(
        self, operator, mock_subprocess_run, tmp_path
    ):
        staged = tmp_path / "staging dir" / "system.img"

        operator.install_partition_image(staged, "system")

        command = su_command(mock_subprocess_run)
        assert command.startswith("gsi_tool install ")
        assert command.endswith(" system")
        assert f"'{staged.resolve()}'" in command

    def test_enable_and_disable(self, operator, mock_subprocess_run):
        operator.enable_dynamic_os()
        assert su_command(mock_subprocess_run) == "gsi_tool enable"
        operator.disable_dynamic_os()
        assert su_command(mock_subprocess_run) == "gsi_tool disable"

    def test_failures_reported(self, operator, mock_subprocess_run):
        mock_subprocess_run.return_value = Mock(returncode=1, stdout="", stderr="no space")

        assert operator.create_partition("userdata", 1024) is False
        assert operator.install_partition_image("/tmp/system.img", "system") is False
        assert operator.enable_dynamic_os() is False
        assert operator.set_dynamic_partition_property() is False

    def test_timeout_passed_through(self, operator, mock_subprocess_run):
        operator.enable_dynamic_os()
        assert mock_subprocess_run.call_args.kwargs["timeout"] == 60

    def test_defaults_from_settings(self, mocker):
        values = {
            "su_binary": "/system/xbin/su",
            "gsi_tool_binary": "/system/bin/gsi_tool",
            "privileged_timeout_seconds": "30",
        }
        mocker.patch.dict(settings.settings_store.values, values)

        operator = ShellPrivilegedOperator()

        assert operator.su_binary == "/system/xbin/su"
        assert operator.gsi_tool == "/system/bin/gsi_tool"
        assert operator.timeout == 30.0


class TestGetpropPropertyReader:
    """Tests for reading the running-image property."""

    @pytest.mark.parametrize(
        "stdout, expected",
        [("1\n", True), ("true\n", True), ("0\n", False), ("\n", False)],
    )
    def test_is_dynamic_os_image_running(self, mock_subprocess_run, stdout, expected):
        mock_subprocess_run.return_value = Mock(returncode=0, stdout=stdout, stderr="")

        assert GetpropPropertyReader().is_dynamic_os_image_running() is expected
        assert mock_subprocess_run.call_args.args[0] == ["getprop", IMAGE_RUNNING_PROPERTY]

    def test_missing_getprop_reads_empty(self, mock_subprocess_run):
        mock_subprocess_run.side_effect = FileNotFoundError("getprop")

        reader = GetpropPropertyReader()

        assert reader.get_property(IMAGE_RUNNING_PROPERTY) == ""
        assert reader.is_dynamic_os_image_running() is False

    def test_non_zero_exit_reads_empty(self, mock_subprocess_run):
        mock_subprocess_run.return_value = Mock(returncode=1, stdout="1", stderr="")

        assert GetpropPropertyReader().get_property("ro.build.version.sdk") == ""
