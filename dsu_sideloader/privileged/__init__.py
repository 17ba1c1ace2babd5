"""Privileged collaborators of the installer.

Interfaces:
    - PrivilegedOperator: partition creation/write, DSU enable/disable
    - SystemPropertyReader: reports whether a dynamic OS is booted
    - StreamProvider: resolves source locators into byte streams

Shell implementations:
    - ShellPrivilegedOperator: ``su -c gsi_tool ...``
    - GetpropPropertyReader: ``getprop gsid.image_running``
"""

from .protocols import PrivilegedOperator, StreamProvider, SystemPropertyReader
from .shell import GetpropPropertyReader, ShellPrivilegedOperator, run_command


__all__ = [
    "GetpropPropertyReader",
    "PrivilegedOperator",
    "ShellPrivilegedOperator",
    "StreamProvider",
    "SystemPropertyReader",
    "run_command",
]
