#!/usr/bin/env python3
"""Entry point for debtool."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as SettingsValidationError

from . import __version__
from .builder import ArchiveBuilder
from .config import Settings, get_settings
from .downloader import PackageDownloader
from .installer import PackageInstaller
from .repacker import PackageRepacker
from .show import NameSuggester
from .unpacker import ArchiveUnpacker
from .utils import DebToolError, confirm, setup_logging

EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_ERROR = 2


def _prompt(args: argparse.Namespace):
    return confirm if args.prompt else None


def run_download(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    downloader = PackageDownloader(logger, settings)
    archives = downloader.download(args.download, args.dest, with_dependencies=args.depends)
    for archive in archives:
        print(archive)
    return EXIT_OK


def run_unpack(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    unpacker = ArchiveUnpacker(logger)
    for archive in args.unpack:
        result = unpacker.unpack(
            Path(archive),
            args.dest,
            conventional_name=args.format,
            force=args.force,
        )
        print(result.directory)
    return EXIT_OK


def run_combo(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    downloader = PackageDownloader(logger, settings)
    unpacker = ArchiveUnpacker(logger)
    archives = downloader.download(args.combo, args.dest, with_dependencies=args.depends)
    for archive in archives:
        result = unpacker.unpack(
            archive,
            args.dest,
            conventional_name=args.format,
            force=args.force,
        )
        print(result.directory)
    return EXIT_OK


def run_build(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    directory = Path(args.build[0])
    output = Path(args.build[1]) if len(args.build) > 1 else None
    builder = ArchiveBuilder(logger, settings)
    result = builder.build(
        directory,
        output=output,
        conventional_name=args.auto,
        destination=args.dest,
        update_md5sums=args.md5sums,
        prompt=_prompt(args),
    )
    if result is None:
        print("Cancelled.")
        return EXIT_CANCELLED
    print(result.archive)
    return EXIT_OK


def run_repack(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    repacker = PackageRepacker(logger, settings)
    status = EXIT_OK
    for package in args.repack:
        result = repacker.repack(
            package,
            args.dest,
            tree_only=args.tree,
            force=args.force,
            prompt=_prompt(args),
        )
        if result is None:
            print(f"Skipped {package}.")
            status = EXIT_CANCELLED
            continue
        for path in result.missing:
            print(f"Warning: {package}: missing on disk: {path}", file=sys.stderr)
        print(result.archive or result.tree)
    return status


def run_install(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    installer = PackageInstaller(logger)
    result = installer.install([Path(archive) for archive in args.install])
    if result.success:
        print("Installation completed successfully.")
        return EXIT_OK
    print(f"Installation failed: {result.message}", file=sys.stderr)
    return EXIT_ERROR


def run_suggest(args: argparse.Namespace, settings: Settings, logger: logging.Logger) -> int:
    suggester = NameSuggester(logger, settings)
    for target in args.suggest:
        suggestion = suggester.suggest(target)
        if args.fields:
            print("\n".join(suggestion.summary()))
        else:
            print(suggestion.name)
    return EXIT_OK


COMMANDS = (
    ("build", run_build),
    ("download", run_download),
    ("unpack", run_unpack),
    ("combo", run_combo),
    ("repack", run_repack),
    ("install", run_install),
    ("suggest", run_suggest),
)


def build_parser() -> argparse.ArgumentParser:
    """Build command-line parser."""
    parser = argparse.ArgumentParser(
        prog="debtool",
        description="Download, unpack, build and repack Debian archives.",
    )
    commands = parser.add_argument_group("commands").add_mutually_exclusive_group(required=True)
    commands.add_argument("-b", "--build", nargs="+", metavar="DIR [OUT]",
                          help="build an archive from a directory")
    commands.add_argument("-d", "--download", nargs="+", metavar="PKG",
                          help="download archives with apt-get")
    commands.add_argument("-u", "--unpack", nargs="+", metavar="ARCHIVE",
                          help="unpack archives into directories")
    commands.add_argument("-z", "--combo", nargs="+", metavar="PKG",
                          help="download and unpack in one step")
    commands.add_argument("-r", "--repack", nargs="+", metavar="PKG",
                          help="rebuild installed packages into archives")
    commands.add_argument("-i", "--install", nargs="+", metavar="ARCHIVE",
                          help="install archives with dpkg")
    commands.add_argument("-s", "--suggest", nargs="+", metavar="TARGET",
                          help="print the conventional name of an archive, directory or installed package")
    commands.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("-a", "--auto", action="store_true",
                        help="name built archives package_version_arch.deb")
    parser.add_argument("-f", "--format", action="store_true",
                        help="name unpacked directories package_version_arch")
    parser.add_argument("-m", "--md5sums", action="store_true",
                        help="regenerate DEBIAN/md5sums before building")
    parser.add_argument("-p", "--prompt", action="store_true",
                        help="ask before building, leaving time to edit the tree")
    parser.add_argument("-D", "--depends", action="store_true",
                        help="also download recursive dependencies")
    parser.add_argument("-o", "--dest", type=Path, metavar="DIR",
                        help="destination directory (default: current directory)")
    parser.add_argument("-F", "--force", action="store_true",
                        help="replace existing unpack or repack targets")
    parser.add_argument("-t", "--tree", action="store_true",
                        help="with --repack, stop after reconstructing the directory tree")
    parser.add_argument("-l", "--fields", action="store_true",
                        help="with --suggest, also print the key control fields")
    parser.add_argument("-Z", "--compression", choices=("gzip", "xz", "zstd", "none"),
                        help="compressor used when building")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-q", "--quiet", action="store_true", help="only log warnings and errors")
    verbosity.add_argument("--verbose", action="store_true", help="log every command that runs")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Program entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.build and len(args.build) > 2:
        parser.error("--build takes a directory and an optional output path")

    try:
        settings = get_settings()
    except SettingsValidationError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if args.compression:
        settings = settings.model_copy(update={"compression": args.compression})

    level = settings.log_level_value
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logger = setup_logging("debtool", level)

    handler = next(func for name, func in COMMANDS if getattr(args, name))
    try:
        return handler(args, settings, logger)
    except DebToolError as exc:
        logger.error("Operation failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED


if __name__ == "__main__":
    raise SystemExit(main())
