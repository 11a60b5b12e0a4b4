"""CLI bootstrap installer that downloads puli.phar into the current directory."""

from __future__ import annotations

import argparse
import os
import sys
from enum import Enum
from pathlib import Path
from typing import TextIO

from puli_core.config import (
    DEFAULT_FILENAME,
    STABILITY_STABLE,
    STABILITY_UNSTABLE,
    InstallOptions,
    validate_options,
)
from puli_core.logging_setup import configure_logging

from .service import InstallOrchestrator


TLS_WARNING = (
    "You have instructed the Installer not to enforce SSL/TLS security on remote HTTPS requests.\n"
    "This will leave all downloads during installation vulnerable to Man-In-The-Middle (MITM) attacks."
)


class OutputMode(str, Enum):
    ANSI = "ansi"
    PLAIN = "plain"

    @classmethod
    def detect(cls, ansi: bool | None, stream: TextIO) -> "OutputMode":
        if ansi is not None:
            return cls.ANSI if ansi else cls.PLAIN
        if os.name == "nt":
            if "ANSICON" in os.environ or os.environ.get("ConEmuANSI") == "ON":
                return cls.ANSI
            return cls.PLAIN
        isatty = getattr(stream, "isatty", None)
        return cls.ANSI if isatty is not None and isatty() else cls.PLAIN


class Console:
    _COLORS = {"success": "\033[0;32m", "error": "\033[31;31m", "info": "\033[33;33m"}

    def __init__(self, mode: OutputMode, stream: TextIO | None = None) -> None:
        self.mode = mode
        self.stream = stream or sys.stdout

    def _write(self, kind: str, text: str) -> None:
        if self.mode is OutputMode.ANSI:
            text = f"{self._COLORS[kind]}{text}\033[0m"
        self.stream.write(text + "\n")
        self.stream.flush()

    def success(self, text: str) -> None:
        self._write("success", text)

    def error(self, text: str) -> None:
        self._write("error", text)

    def info(self, text: str) -> None:
        self._write("info", text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="puli-installer", description="Puli Installer")
    parser.add_argument("--check", action="store_true", help="Check the options only")
    parser.add_argument("--force", action="store_true", help="Install even if the options are not valid")
    parser.add_argument("--quiet", action="store_true", help="Do not output unimportant messages")
    parser.add_argument("--verbose", action="store_true", help="Log pipeline details to stderr")
    parser.add_argument("--log-file", default=None, help="Write a JSON log of the run to this file")
    parser.add_argument("--install-dir", default=None, help="Target installation directory")
    parser.add_argument("--version", default=None, help="Install a specific version")
    parser.add_argument("--filename", default=DEFAULT_FILENAME, help="Target filename")
    parser.add_argument("--disable-tls", action="store_true", help="Disable SSL/TLS security for file downloads")
    parser.add_argument("--cafile", default=None, help="Certificate Authority (CA) file for SSL/TLS verification")

    stability = parser.add_mutually_exclusive_group()
    stability.add_argument("--stable", dest="stability", action="store_const", const=STABILITY_STABLE)
    stability.add_argument("--unstable", dest="stability", action="store_const", const=STABILITY_UNSTABLE)
    parser.set_defaults(stability=STABILITY_UNSTABLE)

    ansi = parser.add_mutually_exclusive_group()
    ansi.add_argument("--ansi", dest="ansi", action="store_const", const=True, help="Force ANSI color output")
    ansi.add_argument("--no-ansi", dest="ansi", action="store_const", const=False, help="Disable ANSI color output")
    parser.set_defaults(ansi=None)
    return parser


def options_from_args(args: argparse.Namespace) -> InstallOptions:
    return InstallOptions(
        install_dir=Path(args.install_dir).expanduser() if args.install_dir else None,
        filename=args.filename.strip(),
        version=args.version.strip() if args.version else None,
        stability=args.stability,
        cafile=Path(args.cafile).expanduser() if args.cafile else None,
        disable_tls=args.disable_tls,
        quiet=args.quiet,
        force=args.force,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console(OutputMode.detect(args.ansi, sys.stdout))
    configure_logging(verbose=args.verbose, log_file=Path(args.log_file) if args.log_file else None)

    options = options_from_args(args)
    if options.disable_tls:
        console.info(TLS_WARNING)

    if args.check:
        problems = validate_options(options)
        for problem in problems:
            console.info(problem)
        if not problems and not options.quiet:
            console.success("All settings correct for using Puli")
        return 0 if not problems else 1

    result = InstallOrchestrator(options, progress=console.info).run()
    if result.ok:
        if not options.quiet:
            console.success("\n" + result.messages[0])
            for message in result.messages[1:]:
                console.info(message)
        return result.exit_code

    for message in result.messages:
        console.error(message)
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
