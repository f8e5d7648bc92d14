#!/usr/bin/env python3
"""Unpack Debian archives into editable, rebuildable directory trees."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .control import CONTROL_DIR, ControlFields, directory_name, parse_control
from .utils import (
    CommandExecutionError,
    UnpackError,
    ValidationError,
    require_commands,
    run_command,
)

AR_MAGIC = b"!<arch>\n"
ARCHIVE_SUFFIXES = (".deb", ".udeb")


@dataclass
class UnpackResult:
    """Result of unpacking one archive."""

    archive: Path
    directory: Path
    fields: ControlFields


def validate_archive(archive: Path) -> None:
    """Check that a path looks like a Debian binary archive."""
    if not archive.exists() or not archive.is_file():
        raise ValidationError(f"File does not exist: {archive}")

    with archive.open("rb") as handle:
        magic = handle.read(len(AR_MAGIC))
    if magic != AR_MAGIC:
        raise ValidationError(f"Invalid Debian archive (missing ar header): {archive}")


def default_directory_name(archive: Path) -> str:
    """Name an unpack directory after its archive file."""
    name = archive.name
    for suffix in ARCHIVE_SUFFIXES:
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return archive.stem


class ArchiveUnpacker:
    """Extract payload and control members of archives with dpkg-deb."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("debtool.unpacker")

    def read_fields(self, archive: Path) -> ControlFields:
        """Read the control paragraph of an archive."""
        try:
            _, output = run_command(["dpkg-deb", "--field", str(archive)], self.logger, capture=True)
        except CommandExecutionError as exc:
            raise UnpackError(f"Cannot read control fields of {archive}: {exc}") from exc
        return parse_control("\n".join(output), str(archive))

    def _prepare_target(self, target: Path, force: bool) -> None:
        if target.exists() or target.is_symlink():
            if target.is_dir() and not target.is_symlink() and not any(target.iterdir()):
                return
            if not force:
                raise UnpackError(f"Target already exists: {target} (use --force to replace it)")
            self.logger.warning("Replacing existing target: %s", target)
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        target.mkdir(parents=True)

    def unpack(
        self,
        archive: Path,
        destination: Optional[Path] = None,
        target_name: Optional[str] = None,
        conventional_name: bool = False,
        force: bool = False,
        log_callback=None,
    ) -> UnpackResult:
        """Unpack ``archive`` into ``destination/<name>``.

        The directory name is ``target_name`` when given, the Debian
        ``package_version_arch`` convention with ``conventional_name``, and the
        archive base name otherwise. The control area lands in ``DEBIAN/`` so
        the tree can be rebuilt with ``dpkg-deb --build``.
        """
        require_commands("dpkg-deb")

        archive = archive.expanduser().resolve()
        validate_archive(archive)
        fields = self.read_fields(archive)

        destination = (destination or Path.cwd()).expanduser().resolve()
        if target_name:
            name = target_name
        elif conventional_name:
            name = directory_name(fields)
        else:
            name = default_directory_name(archive)
        target = destination / name

        self._prepare_target(target, force)
        if log_callback:
            log_callback(f"Unpacking {archive.name} into {target}")

        try:
            run_command(
                ["dpkg-deb", "--extract", str(archive), str(target)],
                self.logger,
                log_callback=log_callback,
            )
            run_command(
                ["dpkg-deb", "--control", str(archive), str(target / CONTROL_DIR)],
                self.logger,
                log_callback=log_callback,
            )
        except CommandExecutionError as exc:
            shutil.rmtree(target, ignore_errors=True)
            raise UnpackError(f"Failed to unpack {archive}: {exc}") from exc

        self.logger.info("Unpacked %s to %s", archive, target)
        return UnpackResult(archive=archive, directory=target, fields=fields)
