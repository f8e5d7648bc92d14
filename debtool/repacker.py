#!/usr/bin/env python3
"""Rebuild archives of installed packages from the dpkg database.

The package tree is reconstructed from ``dpkg-query`` output: the status
paragraph becomes ``DEBIAN/control``, maintainer scripts are copied from the
control area, and every listed file is copied from the live filesystem,
following diversions to where the package's file actually lives.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Optional

from .builder import ArchiveBuilder
from .config import Settings, get_settings
from .control import (
    CONTROL_DIR,
    Conffile,
    ControlFields,
    directory_name,
    fix_control_permissions,
    generate_md5sums,
    parse_conffiles,
    parse_control,
    write_control_file,
)
from .utils import (
    BuildError,
    CommandExecutionError,
    RepackError,
    cleanup_dir,
    create_temp_dir,
    require_commands,
    run_command,
)

# Database-only fields that must not end up in a rebuilt control file.
STATUS_ONLY_FIELDS = (
    "Status",
    "Config-Version",
    "Conffiles",
    "Triggers-Awaited",
    "Triggers-Pending",
)
# Trigger states only wait for trigger processing; every file is in place.
INSTALLED_STATES = {"installed", "triggers-awaited", "triggers-pending"}
SKIPPED_CONTROL_MEMBERS = {"md5sums", "conffiles", "list"}

PromptCallback = Optional[Callable[[str], bool]]


@dataclass
class ListedPath:
    """A path owned by a package and where its content lives on disk."""

    path: str
    source: str

    @property
    def diverted(self) -> bool:
        return self.path != self.source


@dataclass
class RepackResult:
    """Outcome of repacking one installed package."""

    package: str
    tree: Path
    archive: Optional[Path] = None
    missing: list[str] = field(default_factory=list)
    conffiles: list[str] = field(default_factory=list)


def parse_file_list(lines: Iterable[str]) -> list[ListedPath]:
    """Parse ``dpkg-query --listfiles`` output, resolving diversions.

    A ``diverted by <pkg> to: <path>`` or ``locally diverted to: <path>`` line
    follows the path it applies to and names where that package's copy was
    moved. ``package diverts others to:`` lines describe diversions the
    package itself owns and do not move its own file.
    """
    entries: list[ListedPath] = []
    for raw_line in lines:
        line = raw_line.rstrip("\n")
        if not line.strip():
            continue
        if line.startswith("package diverts others to: "):
            continue
        if line.startswith("diverted by ") or line.startswith("locally diverted to: "):
            if entries and ": " in line:
                entries[-1].source = line.split(": ", 1)[1]
            continue
        if line in {"/.", "/"}:
            continue
        entries.append(ListedPath(path=line, source=line))
    return entries


def parse_status_state(text: str) -> str:
    """Return the state word of a dpkg ``Status`` value."""
    words = text.split()
    return words[-1] if words else ""


def _ancestor_dirs(paths: Iterable[str]) -> set[str]:
    ancestors: set[str] = set()
    for path in paths:
        for parent in PurePosixPath(path).parents:
            ancestors.add(str(parent))
    return ancestors


class PackageRepacker:
    """Reconstruct installed packages and build them into archives."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        settings: Optional[Settings] = None,
        root: Path = Path("/"),
        builder: Optional[ArchiveBuilder] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("debtool.repacker")
        self.settings = settings or get_settings()
        self.root = root
        self.builder = builder or ArchiveBuilder(self.logger, self.settings)

    def _query(self, *args: str, check: bool = True) -> tuple[int, list[str]]:
        cmd = [*self.settings.dpkg_query_args(), *args]
        return run_command(cmd, self.logger, check=check, capture=True)

    def _host_path(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def check_installed(self, package: str) -> None:
        """Refuse packages that are absent, ambiguous or not fully installed."""
        returncode, output = self._query("--show", "--showformat=${Status}\\n", package, check=False)
        statuses = [line.strip() for line in output if line.strip()]
        if returncode != 0 or not statuses:
            raise RepackError(f"Package is not installed: {package}")
        if len(statuses) > 1:
            raise RepackError(
                f"Package name {package} matches several instances; qualify it with :<arch>"
            )

        state = parse_status_state(statuses[0])
        if state not in INSTALLED_STATES:
            raise RepackError(f"Package {package} is not fully installed (status: {statuses[0]})")

    def read_control(self, package: str) -> ControlFields:
        """Return the package's control paragraph without database-only fields."""
        try:
            _, output = self._query("--status", package)
        except CommandExecutionError as exc:
            raise RepackError(f"Cannot read status of {package}: {exc}") from exc

        fields = parse_control("\n".join(output), f"dpkg status of {package}")
        fields.drop(*STATUS_ONLY_FIELDS)
        return fields

    def read_conffiles(self, package: str) -> list[Conffile]:
        _, output = self._query("--show", "--showformat=${Conffiles}\\n", package)
        return parse_conffiles(output)

    def read_file_list(self, package: str) -> list[ListedPath]:
        try:
            _, output = self._query("--listfiles", package)
        except CommandExecutionError as exc:
            raise RepackError(f"Cannot list files of {package}: {exc}") from exc
        return parse_file_list(output)

    def copy_control_members(self, package: str, control_dir: Path) -> list[str]:
        """Copy maintainer scripts and other control members into ``DEBIAN/``."""
        returncode, members = self._query("--control-list", package, check=False)
        if returncode != 0:
            self.logger.warning("dpkg-query --control-list failed for %s; no scripts copied", package)
            return []

        copied: list[str] = []
        for member in (name.strip() for name in members):
            if not member or member in SKIPPED_CONTROL_MEMBERS:
                continue
            _, paths = self._query("--control-path", package, member)
            if not paths:
                continue
            source = Path(paths[0].strip())
            try:
                shutil.copy2(source, control_dir / member)
            except FileNotFoundError:
                self.logger.warning("Control member %s of %s vanished: %s", member, package, source)
                continue
            except PermissionError as exc:
                raise RepackError(f"Cannot read {source}; try again as root") from exc
            copied.append(member)

        self.logger.debug("Copied control members of %s: %s", package, ", ".join(copied) or "none")
        return copied

    def _copy_entry(self, entry: ListedPath, tree: Path, ancestors: set[str]) -> bool:
        """Materialise one listed path in the tree; False when it is missing."""
        source = self._host_path(entry.source)
        target = tree / entry.path.lstrip("/")

        if not source.exists() and not source.is_symlink():
            return False

        try:
            if source.is_symlink():
                if source.is_dir() and entry.path in ancestors:
                    # A directory of the package that the system turned into a
                    # symlink (merged /usr and the like); keep it a directory.
                    target.mkdir(parents=True, exist_ok=True)
                    target.chmod(stat.S_IMODE(source.stat().st_mode))
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if target.is_symlink() or target.exists():
                        target.unlink()
                    os.symlink(os.readlink(source), target)
            elif source.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                target.chmod(stat.S_IMODE(source.stat().st_mode))
            elif source.is_file():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target, follow_symlinks=False)
            else:
                self.logger.warning("Skipping special file: %s", entry.path)
        except PermissionError as exc:
            raise RepackError(f"Cannot read {source}; try again as root") from exc

        if entry.diverted:
            self.logger.info("Took diverted %s from %s", entry.path, entry.source)
        return True

    def write_conffiles(self, conffiles: list[Conffile], tree: Path) -> list[str]:
        """Write ``DEBIAN/conffiles`` for the conffiles still shipped."""
        kept: list[str] = []
        lines: list[str] = []
        for conffile in conffiles:
            if conffile.obsolete:
                self.logger.info("Dropping obsolete conffile: %s", conffile.path)
                continue
            if "remove-on-upgrade" in conffile.flags:
                lines.append(f"remove-on-upgrade {conffile.path}")
                continue
            if not (tree / conffile.path.lstrip("/")).is_file():
                self.logger.warning("Dropping conffile missing on disk: %s", conffile.path)
                continue
            kept.append(conffile.path)
            lines.append(conffile.path)

        conffiles_file = tree / CONTROL_DIR / "conffiles"
        if lines:
            conffiles_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        else:
            conffiles_file.unlink(missing_ok=True)
        return kept

    def reconstruct(self, package: str, tree: Path, log_callback=None) -> RepackResult:
        """Rebuild the directory tree of an installed package under ``tree``."""
        require_commands("dpkg-query", "md5sum")
        self.check_installed(package)

        fields = self.read_control(package)
        control_dir = tree / CONTROL_DIR
        control_dir.mkdir(parents=True, exist_ok=True)
        write_control_file(control_dir / "control", fields)
        self.copy_control_members(package, control_dir)

        entries = sorted(self.read_file_list(package), key=lambda item: item.path)
        ancestors = _ancestor_dirs(entry.path for entry in entries)
        if log_callback:
            log_callback(f"Collecting {len(entries)} paths of {package}")

        missing: list[str] = []
        for entry in entries:
            if not self._copy_entry(entry, tree, ancestors):
                self.logger.warning("Skipping path missing on disk: %s", entry.path)
                missing.append(entry.path)

        conffiles = self.write_conffiles(self.read_conffiles(package), tree)
        try:
            generate_md5sums(tree, self.logger, exclude=conffiles)
        except CommandExecutionError as exc:
            raise RepackError(f"Cannot checksum the files of {package}: {exc}") from exc
        fix_control_permissions(tree)
        tree.chmod(0o755)

        self.logger.info("Reconstructed %s in %s", package, tree)
        return RepackResult(package=package, tree=tree, missing=missing, conffiles=conffiles)

    def repack(
        self,
        package: str,
        destination: Optional[Path] = None,
        tree_only: bool = False,
        force: bool = False,
        prompt: PromptCallback = None,
        log_callback=None,
    ) -> Optional[RepackResult]:
        """Repack an installed package into ``destination``.

        With ``tree_only`` the reconstructed directory is the result and no
        archive is built. Returns None when the build prompt is declined.
        """
        destination = (destination or Path.cwd()).expanduser().resolve()
        destination.mkdir(parents=True, exist_ok=True)

        if tree_only:
            self.check_installed(package)
            tree = destination / directory_name(self.read_control(package))
            if tree.exists() and any(tree.iterdir()):
                if not force:
                    raise RepackError(f"Target already exists: {tree} (use --force to replace it)")
                shutil.rmtree(tree)
            try:
                return self.reconstruct(package, tree, log_callback)
            except BaseException:
                cleanup_dir(tree, self.logger)
                raise

        workspace = create_temp_dir("debtool-repack-")
        try:
            result = self.reconstruct(package, workspace / package.replace(":", "_"), log_callback)
            try:
                built = self.builder.build(
                    result.tree,
                    output=destination,
                    conventional_name=True,
                    update_md5sums=prompt is not None,
                    prompt=prompt,
                    log_callback=log_callback,
                )
            except BuildError as exc:
                raise RepackError(f"Failed to build repacked {package}: {exc}") from exc
            if built is None:
                return None
            result.archive = built.archive
            return result
        finally:
            cleanup_dir(workspace, self.logger)
