from __future__ import annotations

from pathlib import Path

import pytest

from debtool import show, unpacker
from debtool.show import NameSuggester
from debtool.utils import CommandExecutionError, ValidationError


def test_suggest_for_directory(package_tree: Path, settings, logger):
    suggestion = NameSuggester(logger, settings).suggest(str(package_tree))

    assert suggestion.kind == "directory"
    assert suggestion.name == "hello_2.10-3_amd64.deb"
    summary = suggestion.summary()
    assert summary[0].endswith("-> hello_2.10-3_amd64.deb")
    assert "  Depends: libc6 (>= 2.34)" in summary


def test_suggest_for_archive(monkeypatch, tmp_path: Path, settings, logger, control_text):
    archive = tmp_path / "whatever.deb"
    archive.write_bytes(b"!<arch>\n")
    monkeypatch.setattr(unpacker, "run_command", lambda cmd, logger, **kwargs: (0, control_text.splitlines()))

    suggestion = NameSuggester(logger, settings).suggest(str(archive))

    assert suggestion.kind == "archive"
    assert suggestion.name == "hello_2.10-3_amd64.deb"


def test_suggest_for_installed_package(monkeypatch, settings, logger):
    status = "Package: bash\nStatus: install ok installed\nVersion: 5.2.15-2+b2\nArchitecture: amd64\n"
    monkeypatch.setattr(show, "run_command", lambda cmd, logger, **kwargs: (0, status.splitlines()))

    suggestion = NameSuggester(logger, settings).suggest("bash")

    assert suggestion.kind == "installed"
    assert suggestion.name == "bash_5.2.15-2+b2_amd64.deb"


def test_suggest_for_unknown_target(monkeypatch, settings, logger):
    def failing(cmd, logger, **kwargs):
        raise CommandExecutionError("dpkg-query: package 'nope' is not installed", 1)

    monkeypatch.setattr(show, "run_command", failing)

    with pytest.raises(ValidationError, match="nope"):
        NameSuggester(logger, settings).suggest("nope")
