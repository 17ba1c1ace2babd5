"""Partition allow/deny policy."""

# Partitions that are not replaceable through DSU or that the installer
# manages itself (userdata is allocated by the orchestrator).
UNSUPPORTED_PARTITIONS = frozenset(
    {
        "vbmeta",
        "boot",
        "userdata",
        "dtbo",
        "super_empty",
        "system_other",
        "scratch",
    }
)


def is_partition_supported(partition_name: str) -> bool:
    """Return True if ``partition_name`` may be installed as part of a DSU."""
    if not partition_name:
        return False
    return partition_name not in UNSUPPORTED_PARTITIONS
