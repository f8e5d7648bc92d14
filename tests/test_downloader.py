from __future__ import annotations

from pathlib import Path

import pytest

from debtool import downloader
from debtool.config import Settings
from debtool.downloader import (
    PackageDownloader,
    base_package_name,
    parse_policy_candidate,
    parse_recursive_depends,
)
from debtool.utils import CommandExecutionError, DownloadError

DEPENDS_OUTPUT = """hello
  Depends: libc6
libc6
  Depends: libgcc-s1
  PreDepends: <debconf-2.0>
libgcc-s1
  Depends: gcc-12-base
  Depends: libc6
<debconf-2.0>
gcc-12-base
""".splitlines()

POLICY_FOUND = """hello:
  Installed: (none)
  Candidate: 2.10-3
  Version table:
     2.10-3 500
""".splitlines()

POLICY_MISSING = """ghost:
  Installed: (none)
  Candidate: (none)
""".splitlines()


class FakeApt:
    def __init__(self, missing=()):
        self.calls = []
        self.missing = set(missing)

    def __call__(self, cmd, logger, cwd=None, env=None, log_callback=None, check=True, capture=False):
        self.calls.append(cmd)
        if cmd[0] == "apt-cache" and "depends" in cmd:
            return 0, DEPENDS_OUTPUT
        if cmd[0] == "apt-cache" and "policy" in cmd:
            return 0, POLICY_MISSING if cmd[-1] in self.missing else POLICY_FOUND
        if cmd[0] == "apt-get":
            packages = cmd[cmd.index("download") + 1:]
            for package in packages:
                (Path(cwd) / f"{base_package_name(package)}_1.0_amd64.deb").write_bytes(b"!<arch>\n")
            return 0, [f"Get:1 http://deb.debian.org/debian bookworm/main {package}" for package in packages]
        raise AssertionError(f"unexpected command: {cmd}")


@pytest.fixture
def fake_apt(monkeypatch):
    apt = FakeApt()
    monkeypatch.setattr(downloader, "run_command", apt)
    monkeypatch.setattr(downloader, "require_commands", lambda *binaries: None)
    return apt


def test_parse_recursive_depends_skips_virtual_packages():
    assert parse_recursive_depends(DEPENDS_OUTPUT) == ["hello", "libc6", "libgcc-s1", "gcc-12-base"]


def test_parse_policy_candidate():
    assert parse_policy_candidate(POLICY_FOUND) == "2.10-3"
    assert parse_policy_candidate(POLICY_MISSING) is None
    assert parse_policy_candidate([]) is None


def test_base_package_name():
    assert base_package_name("hello=2.10-3") == "hello"
    assert base_package_name("hello/bookworm-backports") == "hello"
    assert base_package_name("libc6:i386") == "libc6"


def test_download_returns_new_archives(fake_apt, tmp_path: Path, settings, logger):
    archives = PackageDownloader(logger, settings).download(["hello", "hello"], tmp_path)

    assert archives == [(tmp_path / "hello_1.0_amd64.deb").resolve()]
    download_cmd = fake_apt.calls[-1]
    assert download_cmd == ["apt-get", "download", "hello"]


def test_download_with_dependencies(fake_apt, tmp_path: Path, settings, logger):
    messages = []

    archives = PackageDownloader(logger, settings).download(
        ["hello=2.10-3"], tmp_path, with_dependencies=True, log_callback=messages.append
    )

    depends_cmd = fake_apt.calls[0]
    assert "--recurse" in depends_cmd and "--no-recommends" in depends_cmd
    assert depends_cmd[-1] == "hello"
    assert fake_apt.calls[-1][2:] == ["hello=2.10-3", "libc6", "libgcc-s1", "gcc-12-base"]
    assert len(archives) == 4
    assert any("Resolved 4 packages" in message for message in messages)


def test_download_passes_apt_options(fake_apt, tmp_path: Path, logger):
    settings = Settings(_env_file=None, apt_options=["APT::Architecture=arm64"])

    PackageDownloader(logger, settings).download(["hello"], tmp_path)

    assert fake_apt.calls[-1][:4] == ["apt-get", "-o", "APT::Architecture=arm64", "download"]


def test_download_missing_candidate(monkeypatch, tmp_path: Path, settings, logger):
    apt = FakeApt(missing={"ghost"})
    monkeypatch.setattr(downloader, "run_command", apt)
    monkeypatch.setattr(downloader, "require_commands", lambda *binaries: None)

    with pytest.raises(DownloadError, match="ghost"):
        PackageDownloader(logger, settings).download(["hello", "ghost"], tmp_path)
    assert not any(cmd[0] == "apt-get" for cmd in apt.calls)


def test_download_existing_archive_is_reported(monkeypatch, tmp_path: Path, settings, logger):
    existing = tmp_path / "hello_2.10-3_amd64.deb"
    existing.write_bytes(b"!<arch>\n")

    def run(cmd, logger, cwd=None, **kwargs):
        if cmd[0] == "apt-cache":
            return 0, POLICY_FOUND
        return 0, []

    monkeypatch.setattr(downloader, "run_command", run)
    monkeypatch.setattr(downloader, "require_commands", lambda *binaries: None)

    assert PackageDownloader(logger, settings).download(["hello"], tmp_path) == [existing]


def test_download_failure(monkeypatch, tmp_path: Path, settings, logger):
    def run(cmd, logger, **kwargs):
        if cmd[0] == "apt-cache":
            return 0, POLICY_FOUND
        raise CommandExecutionError("E: Can't select candidate version", 100)

    monkeypatch.setattr(downloader, "run_command", run)
    monkeypatch.setattr(downloader, "require_commands", lambda *binaries: None)

    with pytest.raises(DownloadError, match="apt-get download failed"):
        PackageDownloader(logger, settings).download(["hello"], tmp_path)


def test_download_requires_packages(tmp_path: Path, settings, logger):
    with pytest.raises(DownloadError):
        PackageDownloader(logger, settings).download([], tmp_path)


def test_archive_version_decodes_epoch():
    assert downloader.archive_version(Path("bash_5.2.15-2+b9_amd64.deb")) == "5.2.15-2+b9"
    assert downloader.archive_version(Path("libfoo_1%3a2.0-1_all.deb")) == "1:2.0-1"
    assert downloader.archive_version(Path("broken.deb")) is None


@pytest.fixture
def apt_with_nothing_new(monkeypatch):
    def run(cmd, logger, cwd=None, **kwargs):
        if cmd[0] == "apt-cache":
            return 0, POLICY_FOUND
        return 0, []

    monkeypatch.setattr(downloader, "run_command", run)
    monkeypatch.setattr(downloader, "require_commands", lambda *binaries: None)


def test_download_reuses_only_the_candidate_version(apt_with_nothing_new, tmp_path: Path, settings, logger):
    for name in ("hello_2.9-1_amd64.deb", "hello_2.10-3_amd64.deb", "hello_2.11-1_amd64.deb"):
        (tmp_path / name).write_bytes(b"!<arch>\n")

    archives = PackageDownloader(logger, settings).download(["hello"], tmp_path)

    assert [path.name for path in archives] == ["hello_2.10-3_amd64.deb"]


def test_download_reuses_pinned_version(apt_with_nothing_new, tmp_path: Path, settings, logger):
    for name in ("hello_2.9-1_amd64.deb", "hello_2.10-3_amd64.deb"):
        (tmp_path / name).write_bytes(b"!<arch>\n")

    archives = PackageDownloader(logger, settings).download(["hello=2.9-1"], tmp_path)

    assert [path.name for path in archives] == ["hello_2.9-1_amd64.deb"]


def test_download_falls_back_to_newest_present_archive(apt_with_nothing_new, tmp_path: Path, settings, logger):
    for name in ("hello_2.9-1_amd64.deb", "hello_2.10-1_amd64.deb"):
        (tmp_path / name).write_bytes(b"!<arch>\n")

    archives = PackageDownloader(logger, settings).download(["hello"], tmp_path)

    assert [path.name for path in archives] == ["hello_2.10-1_amd64.deb"]
