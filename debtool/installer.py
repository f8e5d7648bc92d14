#!/usr/bin/env python3
"""Installation backend for built or downloaded archives."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .unpacker import validate_archive
from .utils import (
    PARSEABLE_LOCALE,
    InstallError,
    command_exists,
    is_root,
    require_commands,
    run_command,
)


@dataclass
class InstallResult:
    """Structured result of a dpkg installation attempt."""

    success: bool
    returncode: int
    message: str


def classify_failure(output: str) -> str:
    """Turn dpkg error output into a short explanation."""
    if "dpkg frontend lock" in output or "unable to lock" in output or "is locked by another process" in output:
        return "The dpkg database is locked. Close other package managers and retry."

    if "dependency problems" in output or ("depends on" in output and "not installed" in output):
        return "Unmet dependencies. Run 'apt-get --fix-broken install' to pull them in."

    if "trying to overwrite" in output:
        return "File conflict detected. Another package already ships one of these files."

    if "conflicts with" in output:
        return "The archive conflicts with an installed package."

    if "not a debian format archive" in output or "corrupted" in output or "unexpected end of file" in output:
        return "Archive is invalid or corrupted."

    if "requested operation requires superuser privilege" in output:
        return "Installation requires root privileges."

    return "dpkg returned an error; review logs for details"


class PackageInstaller:
    """Install archives with dpkg, using elevated privileges."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("debtool.installer")

    def privilege_prefix(self) -> tuple[list[str], str]:
        """Return the command prefix used to gain root and its name."""
        if is_root():
            return [], "root"
        if command_exists("pkexec"):
            return ["pkexec"], "pkexec"
        if command_exists("sudo"):
            return ["sudo"], "sudo"
        raise InstallError("Neither pkexec nor sudo is available for privilege escalation")

    def install(self, archives: list[Path], log_callback=None) -> InstallResult:
        """Install archives via ``dpkg --install`` and stream logs.

        Uses current root privileges when available.
        Falls back to pkexec, then sudo.
        """
        if not archives:
            raise InstallError("No archives given to install")

        require_commands("dpkg")
        resolved: list[Path] = []
        for archive in archives:
            archive = archive.expanduser().resolve()
            validate_archive(archive)
            resolved.append(archive)

        prefix, helper = self.privilege_prefix()
        command = prefix + ["dpkg", "--install", *(str(path) for path in resolved)]

        if log_callback:
            log_callback(f"Installing with {helper}: {' '.join(command)}")

        returncode, output_lines = run_command(
            command,
            self.logger,
            env=PARSEABLE_LOCALE,
            log_callback=log_callback,
            check=False,
        )

        if returncode == 0:
            return InstallResult(True, returncode, "Installation completed successfully")

        output = "\n".join(output_lines).lower()
        return InstallResult(False, returncode, classify_failure(output))
