#!/usr/bin/env python3
"""Control file parsing, Debian naming conventions and md5sums generation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from debian.deb822 import Deb822
from debian.debian_support import Version

from .utils import ValidationError, run_command

CONTROL_DIR = "DEBIAN"
MAINTAINER_SCRIPTS = ("preinst", "postinst", "prerm", "postrm", "config")
CONFFILE_FLAGS = {"obsolete", "remove-on-upgrade"}
MD5SUM_BATCH_SIZE = 256

logger = logging.getLogger("debtool.control")


@dataclass
class Conffile:
    """One entry of a package's conffiles database record."""

    path: str
    md5sum: str
    obsolete: bool = False
    flags: list[str] = field(default_factory=list)

    @property
    def is_new(self) -> bool:
        return self.md5sum == "newconffile"


class ControlFields:
    """Thin accessor around a parsed control paragraph."""

    def __init__(self, paragraph: Deb822) -> None:
        self.paragraph = paragraph

    def __contains__(self, key: str) -> bool:
        return key in self.paragraph

    def __getitem__(self, key: str) -> str:
        return self.paragraph[key]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.paragraph.get(key, default)

    @property
    def package(self) -> str:
        return self.paragraph["Package"].strip()

    @property
    def version(self) -> Version:
        return Version(self.paragraph["Version"].strip())

    @property
    def architecture(self) -> str:
        return self.paragraph.get("Architecture", "").strip()

    def drop(self, *keys: str) -> None:
        """Remove fields when present."""
        for key in keys:
            if key in self.paragraph:
                del self.paragraph[key]

    def dump(self) -> str:
        text = self.paragraph.dump()
        return text if text.endswith("\n") else text + "\n"


def parse_control(text: str, source: str = "control") -> ControlFields:
    """Parse control text and check the fields every archive needs."""
    paragraph = Deb822(text)
    for key in ("Package", "Version"):
        if not paragraph.get(key, "").strip():
            raise ValidationError(f"{source}: missing required field {key!r}")
    try:
        Version(paragraph["Version"].strip())
    except ValueError as exc:
        raise ValidationError(f"{source}: invalid version {paragraph['Version']!r}") from exc
    return ControlFields(paragraph)


def read_control_file(path: Path) -> ControlFields:
    if not path.is_file():
        raise ValidationError(f"Control file does not exist: {path}")
    return parse_control(path.read_text(encoding="utf-8", errors="replace"), str(path))


def write_control_file(path: Path, fields: ControlFields) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(fields.dump(), encoding="utf-8")


def strip_epoch(version: str) -> str:
    """Return a version string without its epoch, as used in file names."""
    parsed = Version(version)
    if parsed.debian_revision:
        return f"{parsed.upstream_version}-{parsed.debian_revision}"
    return parsed.upstream_version


def directory_name(fields: ControlFields) -> str:
    """Return ``<package>_<version>_<arch>`` following Debian conventions."""
    components = [fields.package, strip_epoch(str(fields.version))]
    if fields.architecture:
        components.append(fields.architecture)
    return "_".join(components)


def archive_name(fields: ControlFields) -> str:
    return f"{directory_name(fields)}.deb"


def parse_conffiles(lines: Iterable[str]) -> list[Conffile]:
    """Parse ``dpkg-query -W -f='${Conffiles}\\n'`` output.

    Each line looks like `` /etc/foo.conf <md5> [obsolete] [remove-on-upgrade]``.
    """
    conffiles: list[Conffile] = []
    for raw_line in lines:
        tokens = raw_line.strip().split(" ")
        if len(tokens) < 2 or not tokens[0].startswith("/"):
            continue

        flags: list[str] = []
        while len(tokens) > 2 and tokens[-1] in CONFFILE_FLAGS:
            flags.insert(0, tokens.pop())

        md5sum = tokens.pop()
        path = " ".join(tokens)
        conffiles.append(
            Conffile(path=path, md5sum=md5sum, obsolete="obsolete" in flags, flags=flags)
        )
    return conffiles


def read_conffiles_list(tree: Path) -> list[str]:
    """Return the entries of ``DEBIAN/conffiles`` in a package tree."""
    conffiles_file = tree / CONTROL_DIR / "conffiles"
    if not conffiles_file.is_file():
        return []
    entries = []
    for line in conffiles_file.read_text(encoding="utf-8").splitlines():
        entry = line.strip()
        # dpkg >= 1.20.1 allows a "remove-on-upgrade" flag before the path.
        if entry.startswith("remove-on-upgrade "):
            entry = entry.split(" ", 1)[1].strip()
        if entry:
            entries.append(entry)
    return entries


def _payload_files(tree: Path, exclude: set[str]) -> list[str]:
    files: list[str] = []
    for root, dirs, names in os.walk(tree):
        root_path = Path(root)
        if root_path == tree:
            dirs[:] = [name for name in dirs if name != CONTROL_DIR]
        dirs.sort()
        for name in sorted(names):
            path = root_path / name
            if path.is_symlink() or not path.is_file():
                continue
            relative = path.relative_to(tree).as_posix()
            if "/" + relative in exclude:
                continue
            files.append(relative)
    return files


def generate_md5sums(
    tree: Path,
    log: Optional[logging.Logger] = None,
    exclude: Iterable[str] = (),
) -> Optional[Path]:
    """Write ``DEBIAN/md5sums`` for every payload file using md5sum.

    Paths in ``exclude`` are absolute package paths (conffiles). Returns the
    md5sums path, or None when the package carries no regular files. A
    failing md5sum raises CommandExecutionError for the caller to wrap.
    """
    log = log or logger
    md5sums_file = tree / CONTROL_DIR / "md5sums"
    files = _payload_files(tree, set(exclude))

    if not files:
        md5sums_file.unlink(missing_ok=True)
        log.debug("No payload files in %s, md5sums removed", tree)
        return None

    lines: list[str] = []
    for start in range(0, len(files), MD5SUM_BATCH_SIZE):
        batch = files[start:start + MD5SUM_BATCH_SIZE]
        _, output = run_command(["md5sum", "--", *batch], log, cwd=tree, capture=True)
        lines.extend(line for line in output if line.strip())

    md5sums_file.parent.mkdir(parents=True, exist_ok=True)
    md5sums_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    md5sums_file.chmod(0o644)
    log.info("Wrote %d checksums to %s", len(lines), md5sums_file)
    return md5sums_file


def fix_control_permissions(tree: Path) -> None:
    """Set the modes dpkg-deb insists on for the control directory."""
    control_dir = tree / CONTROL_DIR
    if not control_dir.is_dir():
        raise ValidationError(f"Missing control directory: {control_dir}")

    control_dir.chmod(0o755)
    for member in control_dir.iterdir():
        if member.is_symlink() or not member.is_file():
            continue
        if member.name in MAINTAINER_SCRIPTS:
            member.chmod(0o755)
        else:
            member.chmod(0o644)
