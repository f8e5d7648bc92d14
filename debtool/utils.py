#!/usr/bin/env python3
"""Utility helpers for debtool."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional

LogCallback = Optional[Callable[[str], None]]
ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~]|[\(\)][0-9A-Za-z])")
# Locale for commands whose output is parsed.
PARSEABLE_LOCALE = {"LC_ALL": "C"}


class DebToolError(Exception):
    """Base exception for all debtool errors."""


class ValidationError(DebToolError):
    """Raised when input validation fails."""


class CommandExecutionError(DebToolError):
    """Raised when a subprocess returns a non-zero exit status."""

    def __init__(self, message: str, returncode: int = 1, output: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output or []


class MissingToolError(DebToolError):
    """Raised when a required system utility is not installed."""


class DownloadError(DebToolError):
    """Raised when package download fails."""


class UnpackError(DebToolError):
    """Raised when archive extraction fails."""


class BuildError(DebToolError):
    """Raised when archive construction fails."""


class RepackError(DebToolError):
    """Raised when an installed package cannot be reconstructed."""


class InstallError(DebToolError):
    """Raised when package installation fails."""


def setup_logging(name: str = "debtool", level: int = logging.INFO) -> logging.Logger:
    """Create and configure a logger with consistent formatting."""
    logger = logging.getLogger(name)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    logger.setLevel(level)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(stream_handler)
    return logger


def create_temp_dir(prefix: str = "debtool-") -> Path:
    """Create a private temporary directory for a work tree."""
    return Path(tempfile.mkdtemp(prefix=prefix))


def cleanup_dir(path: Path, logger: Optional[logging.Logger] = None) -> None:
    """Best-effort temporary directory cleanup."""
    try:
        shutil.rmtree(path, ignore_errors=False)
    except FileNotFoundError:
        return
    except OSError as exc:  # pragma: no cover - best effort cleanup
        if logger:
            logger.warning("Failed to cleanup %s: %s", path, exc)


def command_exists(binary: str) -> bool:
    """Return True if a binary is available in PATH."""
    return shutil.which(binary) is not None


def require_commands(*binaries: str) -> None:
    """Raise MissingToolError listing every binary that is not in PATH."""
    missing = [binary for binary in binaries if not command_exists(binary)]
    if missing:
        raise MissingToolError(f"Required tools not found in PATH: {', '.join(missing)}")


def is_root() -> bool:
    """Return True when running with root privileges."""
    try:
        return os.geteuid() == 0
    except AttributeError:
        return False


def confirm(prompt: str) -> bool:
    """Ask a yes/no question on the terminal; anything but yes means no."""
    try:
        answer = input(f"{prompt} [y/N]: ").strip().lower()
    except EOFError:
        return False
    return answer in {"y", "yes"}


def strip_ansi_escapes(text: str) -> str:
    """Remove ANSI terminal escape codes from a log line."""
    return ANSI_ESCAPE_RE.sub("", text)


def run_command(
    cmd: list[str],
    logger: logging.Logger,
    cwd: Optional[Path] = None,
    env: Optional[dict[str, str]] = None,
    log_callback: LogCallback = None,
    check: bool = True,
    capture: bool = False,
) -> tuple[int, list[str]]:
    """Run a command and return its exit status with its output lines.

    By default combined stdout/stderr is streamed line-by-line to the logger
    and the callback. With ``capture`` stdout is returned verbatim and stderr
    is only logged, and the command runs in the C locale so its messages
    stay in the untranslated form the parsers expect.
    """
    logger.debug("Running command: %s", " ".join(cmd))

    process_env = os.environ.copy()
    if capture:
        process_env.update(PARSEABLE_LOCALE)
    if env:
        process_env.update(env)
    if process_env.get("LC_ALL") == "C":
        process_env.pop("LANGUAGE", None)

    if capture:
        try:
            completed = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                env=process_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise MissingToolError(f"Command not found: {cmd[0]}") from exc

        output_lines = completed.stdout.splitlines()
        error_lines = [line.strip() for line in completed.stderr.splitlines() if line.strip()]
        for line in error_lines:
            logger.debug("%s: %s", cmd[0], line)

        if check and completed.returncode != 0:
            joined = "\n".join(error_lines or output_lines)
            raise CommandExecutionError(
                f"Command failed with exit code {completed.returncode}: {' '.join(cmd)}\n{joined}",
                completed.returncode,
                error_lines + output_lines,
            )
        return completed.returncode, output_lines

    try:
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as exc:
        raise MissingToolError(f"Command not found: {cmd[0]}") from exc

    output_lines = []
    assert process.stdout is not None

    for line in iter(process.stdout.readline, ""):
        raw = line.rstrip("\n")
        stripped = strip_ansi_escapes(raw).strip()
        output_lines.append(stripped)
        if stripped:
            logger.info(stripped)
            if log_callback:
                log_callback(stripped)

    process.wait()

    if check and process.returncode != 0:
        joined = "\n".join(output_lines)
        raise CommandExecutionError(
            f"Command failed with exit code {process.returncode}: {' '.join(cmd)}\n{joined}",
            process.returncode,
            output_lines,
        )

    return process.returncode, output_lines


def format_package_list(items: Iterable[str]) -> str:
    """Format package names for readable display."""
    names = list(items)
    return ", ".join(names) if names else "none"
