"""Tests for the partition deny-list."""

import pytest

from dsu_sideloader.installer.policy import (
    UNSUPPORTED_PARTITIONS,
    is_partition_supported,
)


class TestIsPartitionSupported:
    @pytest.mark.parametrize(
        "name",
        ["vbmeta", "boot", "userdata", "dtbo", "super_empty", "system_other", "scratch"],
    )
    def test_denied_partitions(self, name):
        """Test that every deny-listed partition is rejected."""
        assert is_partition_supported(name) is False

    @pytest.mark.parametrize(
        "name", ["system", "vendor", "product", "system_ext", "odm", "vbmeta_system"]
    )
    def test_other_partitions_supported(self, name):
        """Test that names outside the deny-list are accepted."""
        assert is_partition_supported(name) is True

    def test_empty_name_not_supported(self):
        """Test that an empty partition name is rejected."""
        assert is_partition_supported("") is False

    def test_lookup_is_exact(self):
        """Test that matching is exact, not by prefix or case."""
        assert is_partition_supported("Boot") is True
        assert is_partition_supported("boot_a") is True

    def test_deny_list_contents(self):
        assert UNSUPPORTED_PARTITIONS == {
            "vbmeta",
            "boot",
            "userdata",
            "dtbo",
            "super_empty",
            "system_other",
            "scratch",
        }
