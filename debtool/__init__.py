"""Tooling to download, unpack, build and repack Debian archives."""

__version__ = "1.0.0"
