"""Streaming installer for Dynamic System Update (DSU) images."""

from .__version__ import __version__


__all__ = ["__version__"]
