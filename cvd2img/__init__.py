"""Assemble bootable Cuttlefish disk images from a directory of Android images."""

from .__version__ import __version__

__all__ = ["__version__"]
