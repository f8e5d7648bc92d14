#!/usr/bin/env python3
"""Build Debian archives from directory trees with dpkg-deb."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import Settings, get_settings
from .control import (
    CONTROL_DIR,
    ControlFields,
    archive_name,
    fix_control_permissions,
    generate_md5sums,
    read_conffiles_list,
    read_control_file,
)
from .utils import (
    BuildError,
    CommandExecutionError,
    command_exists,
    is_root,
    require_commands,
    run_command,
)

PromptCallback = Optional[Callable[[str], bool]]


@dataclass
class BuildResult:
    """Result of building one archive."""

    archive: Path
    directory: Path
    fields: ControlFields


class ArchiveBuilder:
    """Turn a ``DEBIAN/``-bearing directory into a ``.deb`` archive."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("debtool.builder")
        self.settings = settings or get_settings()

    def resolve_output(
        self,
        directory: Path,
        fields: ControlFields,
        output: Optional[Path] = None,
        conventional_name: bool = False,
        destination: Optional[Path] = None,
    ) -> Path:
        """Decide where the archive for ``directory`` is written."""
        if output is not None:
            output = output.expanduser()
            if output.is_dir():
                name = archive_name(fields) if conventional_name else f"{directory.name}.deb"
                return (output / name).resolve()
            return output.resolve()

        parent = (destination or directory.parent).expanduser().resolve()
        if conventional_name:
            return parent / archive_name(fields)
        return parent / f"{directory.name}.deb"

    def build_command(self, directory: Path, archive: Path) -> list[str]:
        cmd: list[str] = []
        if self.settings.use_fakeroot and not is_root():
            if command_exists("fakeroot"):
                cmd.append("fakeroot")
            else:
                self.logger.warning("fakeroot is not installed; building without it")

        cmd.append("dpkg-deb")
        if self.settings.root_owner_group:
            cmd.append("--root-owner-group")
        cmd.append(f"-Z{self.settings.compression}")
        if self.settings.compression_level is not None and self.settings.compression != "none":
            cmd.append(f"-z{self.settings.compression_level}")
        cmd.extend(["--build", str(directory), str(archive)])
        return cmd

    def build(
        self,
        directory: Path,
        output: Optional[Path] = None,
        conventional_name: bool = False,
        destination: Optional[Path] = None,
        update_md5sums: bool = False,
        prompt: PromptCallback = None,
        log_callback=None,
    ) -> Optional[BuildResult]:
        """Build an archive and return its location.

        ``prompt`` is asked before ``dpkg-deb`` runs; a negative answer
        cancels the build and returns None.
        """
        require_commands("dpkg-deb")

        directory = directory.expanduser().resolve()
        if not directory.is_dir():
            raise BuildError(f"Directory does not exist: {directory}")

        fields = read_control_file(directory / CONTROL_DIR / "control")
        archive = self.resolve_output(directory, fields, output, conventional_name, destination)

        if prompt is not None and not prompt(f"Build {archive.name} from {directory}?"):
            self.logger.info("Build of %s cancelled", directory)
            return None

        # The tree may have been edited at the prompt.
        fields = read_control_file(directory / CONTROL_DIR / "control")
        archive = self.resolve_output(directory, fields, output, conventional_name, destination)
        if directory in archive.parents:
            raise BuildError(f"Refusing to write the archive inside the tree being built: {archive}")

        if update_md5sums:
            try:
                generate_md5sums(directory, self.logger, exclude=read_conffiles_list(directory))
            except CommandExecutionError as exc:
                raise BuildError(f"Cannot checksum {directory}: {exc}") from exc
        fix_control_permissions(directory)
        archive.parent.mkdir(parents=True, exist_ok=True)

        if log_callback:
            log_callback(f"Building {archive}")
        try:
            run_command(self.build_command(directory, archive), self.logger, log_callback=log_callback)
        except CommandExecutionError as exc:
            raise BuildError(f"dpkg-deb failed to build {directory}: {exc}") from exc

        if not archive.is_file():
            raise BuildError(f"dpkg-deb completed but {archive} was not produced")

        self.logger.info("Built %s", archive)
        return BuildResult(archive=archive, directory=directory, fields=fields)
