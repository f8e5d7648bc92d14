from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import pytest

from debtool.config import Settings

CONTROL_TEXT = """Package: hello
Version: 2.10-3
Architecture: amd64
Maintainer: Santiago Vila <sanvila@debian.org>
Depends: libc6 (>= 2.34)
Description: example package based on GNU hello
 The GNU hello program produces a familiar, friendly greeting.
"""


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("debtool.tests")


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, use_fakeroot=True, compression="xz")


@pytest.fixture
def package_tree(tmp_path: Path) -> Path:
    """An unpacked hello package ready for dpkg-deb --build."""
    tree = tmp_path / "hello"
    (tree / "DEBIAN").mkdir(parents=True)
    (tree / "DEBIAN" / "control").write_text(CONTROL_TEXT, encoding="utf-8")
    postinst = tree / "DEBIAN" / "postinst"
    postinst.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    postinst.chmod(0o644)
    (tree / "DEBIAN" / "conffiles").write_text("/etc/hello.conf\n", encoding="utf-8")

    (tree / "usr" / "bin").mkdir(parents=True)
    (tree / "usr" / "bin" / "hello").write_bytes(b"\x7fELF hello")
    (tree / "etc").mkdir()
    (tree / "etc" / "hello.conf").write_text("greeting=hi\n", encoding="utf-8")
    return tree


def fake_md5sum(cmd, logger, cwd=None, **kwargs):
    """Stand-in for md5sum output computed in-process."""
    assert cmd[:2] == ["md5sum", "--"]
    lines = []
    for name in cmd[2:]:
        digest = hashlib.md5((Path(cwd) / name).read_bytes()).hexdigest()
        lines.append(f"{digest}  {name}")
    return 0, lines


@pytest.fixture
def md5sum_stub():
    return fake_md5sum


@pytest.fixture
def control_text() -> str:
    return CONTROL_TEXT
