#!/usr/bin/env python3
"""Suggest Debian-convention names for archives, trees and installed packages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import Settings, get_settings
from .control import CONTROL_DIR, ControlFields, archive_name, parse_control, read_control_file
from .unpacker import ArchiveUnpacker, validate_archive
from .utils import CommandExecutionError, ValidationError, run_command

SUMMARY_FIELDS = ("Package", "Version", "Architecture", "Maintainer", "Depends")


@dataclass
class Suggestion:
    """The conventional archive name for one target."""

    target: str
    kind: str
    name: str
    fields: ControlFields

    def summary(self) -> list[str]:
        lines = [f"{self.target} ({self.kind}) -> {self.name}"]
        for key in SUMMARY_FIELDS:
            value = self.fields.get(key)
            if value:
                lines.append(f"  {key}: {' '.join(value.split())}")
        return lines


class NameSuggester:
    """Work out what an archive should be called from its control fields."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.logger = logger or logging.getLogger("debtool.show")
        self.settings = settings or get_settings()

    def _installed_fields(self, package: str) -> ControlFields:
        cmd = [*self.settings.dpkg_query_args(), "--status", package]
        try:
            _, output = run_command(cmd, self.logger, capture=True)
        except CommandExecutionError as exc:
            raise ValidationError(f"Not an archive, package tree or installed package: {package}") from exc
        return parse_control("\n".join(output), f"dpkg status of {package}")

    def suggest(self, target: str) -> Suggestion:
        path = Path(target).expanduser()
        if path.is_dir():
            fields = read_control_file(path / CONTROL_DIR / "control")
            kind = "directory"
        elif path.is_file():
            validate_archive(path)
            fields = ArchiveUnpacker(self.logger).read_fields(path)
            kind = "archive"
        else:
            fields = self._installed_fields(target)
            kind = "installed"
        return Suggestion(target=target, kind=kind, name=archive_name(fields), fields=fields)
