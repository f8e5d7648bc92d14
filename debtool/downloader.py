#!/usr/bin/env python3
"""Download Debian archives with apt-get, optionally with their dependencies."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import unquote

from debian.debian_support import Version

from .config import Settings, get_settings
from .utils import (
    CommandExecutionError,
    DownloadError,
    format_package_list,
    require_commands,
    run_command,
)

DEPENDS_EXCLUDE_FLAGS = (
    "--no-recommends",
    "--no-suggests",
    "--no-conflicts",
    "--no-breaks",
    "--no-replaces",
    "--no-enhances",
)


def _unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def base_package_name(package: str) -> str:
    """Strip apt-get version, release and architecture qualifiers."""
    return package.split("=", 1)[0].split("/", 1)[0].split(":", 1)[0]


def parse_recursive_depends(lines: Iterable[str]) -> list[str]:
    """Extract package names from ``apt-cache depends --recurse`` output.

    Package stanzas start at column zero; relationship lines are indented.
    Virtual packages are printed as ``<name>`` and cannot be downloaded.
    """
    names: list[str] = []
    for line in lines:
        if not line or line[0].isspace():
            continue
        name = line.strip()
        if name.startswith("<") and name.endswith(">"):
            continue
        names.append(name)
    return _unique(names)


def archive_version(path: Path) -> Optional[str]:
    """Return the version encoded in an apt-get archive name, epoch included."""
    parts = path.name.split("_")
    if len(parts) < 3:
        return None
    return unquote(parts[1])


def parse_policy_candidate(lines: Iterable[str]) -> Optional[str]:
    """Return the candidate version from ``apt-cache policy`` output."""
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("Candidate:"):
            candidate = stripped.split(":", 1)[1].strip()
            return None if candidate in {"", "(none)"} else candidate
    return None


class PackageDownloader:
    """Fetch archives from the configured apt sources."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("debtool.downloader")
        self.settings = settings or get_settings()

    def resolve_dependencies(self, packages: list[str], log_callback=None) -> list[str]:
        """Expand packages with their recursive hard dependencies."""
        cmd = [
            "apt-cache",
            *self.settings.apt_args(),
            "depends",
            "--recurse",
            *DEPENDS_EXCLUDE_FLAGS,
            *(base_package_name(package) for package in packages),
        ]
        try:
            _, output = run_command(cmd, self.logger, capture=True)
        except CommandExecutionError as exc:
            raise DownloadError(f"Dependency resolution failed: {exc}") from exc

        requested = {base_package_name(package) for package in packages}
        dependencies = [name for name in parse_recursive_depends(output) if name not in requested]
        resolved = _unique(list(packages) + dependencies)
        if log_callback:
            log_callback(f"Resolved {len(resolved)} packages: {format_package_list(resolved)}")
        return resolved

    def check_candidates(self, packages: list[str]) -> dict[str, str]:
        """Return each package's candidate version; fail for packages apt cannot download."""
        candidates: dict[str, str] = {}
        missing: list[str] = []
        for package in packages:
            _, output = run_command(
                ["apt-cache", *self.settings.apt_args(), "policy", base_package_name(package)],
                self.logger,
                check=False,
                capture=True,
            )
            candidate = parse_policy_candidate(output)
            if candidate is None:
                missing.append(package)
            else:
                candidates[package] = candidate
        if missing:
            raise DownloadError(f"No installation candidate for: {format_package_list(missing)}")
        return candidates

    def _archives(self, destination: Path) -> set[Path]:
        return {path.resolve() for path in destination.glob("*.deb") if path.is_file()}

    def present_archive(self, destination: Path, package: str, candidate: Optional[str]) -> Optional[Path]:
        """Find the archive apt-get left in place for ``package``.

        A pinned ``name=version`` wins over the candidate; when neither
        version is present the newest archive of the package is used.
        """
        wanted = package.split("=", 1)[1] if "=" in package else candidate
        present = [path for path in destination.glob(f"{base_package_name(package)}_*.deb") if path.is_file()]
        for path in present:
            if archive_version(path) == wanted:
                return path

        versioned = []
        for path in present:
            try:
                versioned.append((Version(archive_version(path)), path))
            except (TypeError, ValueError):
                continue
        return max(versioned)[1] if versioned else None

    def download(
        self,
        packages: list[str],
        destination: Optional[Path] = None,
        with_dependencies: bool = False,
        log_callback=None,
    ) -> list[Path]:
        """Download archives into ``destination`` and return their paths."""
        packages = _unique(packages)
        if not packages:
            raise DownloadError("No packages given to download")

        require_commands("apt-get", "apt-cache")

        destination = (destination or Path.cwd()).expanduser().resolve()
        destination.mkdir(parents=True, exist_ok=True)

        if with_dependencies:
            packages = self.resolve_dependencies(packages, log_callback)

        candidates = self.check_candidates(packages)

        before = self._archives(destination)
        cmd = ["apt-get", *self.settings.apt_args(), "download", *packages]
        if log_callback:
            log_callback(f"Downloading {format_package_list(packages)} to {destination}")

        try:
            run_command(cmd, self.logger, cwd=destination, log_callback=log_callback)
        except CommandExecutionError as exc:
            raise DownloadError(f"apt-get download failed: {exc}") from exc

        downloaded = sorted(self._archives(destination) - before)
        if not downloaded:
            # apt-get download skips archives that are already present.
            for package in packages:
                archive = self.present_archive(destination, package, candidates.get(package))
                if archive is not None:
                    downloaded.append(archive)

        if not downloaded:
            raise DownloadError("apt-get completed but no archive was produced")

        for path in downloaded:
            self.logger.info("Downloaded: %s", path)
        return downloaded
