# SPDX-License-Identifier: MIT
"""Command-line interface for unibuild."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from unibuild.build.driver import Builder, BuildMode, BuildOptions, parse_modes
from unibuild.core.errors import UnibuildError
from unibuild.core.params import load_params
from unibuild.deps.scanner import IncludeScanner
from unibuild.deps.store import DependencyStore, Table
from unibuild.deps.tracker import DependencyTracker

# Set up logging
logger = logging.getLogger("unibuild")

DEPS_MODES = ("normal", "update", "flush")


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure logging based on verbosity level."""
    if debug:
        level = logging.DEBUG
        fmt = "%(levelname)s: %(name)s: %(message)s"
    elif verbose:
        level = logging.INFO
        fmt = "%(levelname)s: %(message)s"
    else:
        level = logging.WARNING
        fmt = "%(levelname)s: %(message)s"

    logging.basicConfig(level=level, format=fmt)


def cmd_build(args: argparse.Namespace) -> int:
    """Build the project.

    With the 'debug' mode only sample command lines are printed.
    """
    setup_logging(args.verbose, args.debug)

    options = BuildOptions(
        tool_dir=args.tool_dir,
        model_path=Path(args.model),
        params_path=Path(args.params),
        modes=parse_modes(args.mode),
    )

    try:
        builder = Builder(options)
        if options.has_mode(BuildMode.DEBUG):
            for line in builder.print_commands():
                print(line)
            return 0
        return builder.build()
    except UnibuildError as e:
        logger.error("%s", e.message)
        return 1


def cmd_print_commands(args: argparse.Namespace) -> int:
    """Print sample command lines rendered from the model and parameters."""
    setup_logging(args.verbose, args.debug)

    options = BuildOptions(
        tool_dir=args.tool_dir,
        model_path=Path(args.model),
        params_path=Path(args.params),
        modes={BuildMode.NORMAL, BuildMode.DEBUG},
    )

    try:
        for line in Builder(options).print_commands():
            print(line)
    except UnibuildError as e:
        logger.error("%s", e.message)
        return 1
    return 0


def cmd_deps(args: argparse.Namespace) -> int:
    """Scan source dependencies and update the dependency cache.

    Modes:
    - normal: classify sources, write records to staging
    - update: classify sources, write records to the confirmed table
    - flush: replace the confirmed records with the staged ones
    """
    setup_logging(args.verbose, args.debug)

    try:
        if args.deps_mode == "flush":
            if not args.dump_dir:
                logger.error("flush mode needs a cache directory (-d)")
                return 1
            with DependencyStore.open(args.dump_dir) as store:
                store.promote()
            return 0

        if not args.params:
            logger.error("%s mode needs a parameters file (-p)", args.deps_mode)
            return 1

        params = load_params(args.params)
        dump_dir = args.dump_dir or params.dump_path

        with DependencyStore.open(dump_dir) as store:
            tracker = DependencyTracker(IncludeScanner(params.include_dirs), store)
            tracker.load()

            for source in params.sources.compilable():
                own = tracker.file_state(source)
                print(f"[File-{own.value}] {source}")
                total = tracker.classify(source)
                print(f"[End-{total.value}] {source}")
                print()

            table = Table.CONFIRMED if args.deps_mode == "update" else Table.STAGING
            tracker.save(table)
    except UnibuildError as e:
        logger.error("%s", e.message)
        return 1

    return 0


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add common arguments to a parser."""
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--debug", action="store_true", help="Debug output")


def add_model_args(parser: argparse.ArgumentParser) -> None:
    """Add the compiler model / parameters arguments."""
    parser.add_argument(
        "-b", "--tool-dir", default=".", help="Toolchain directory (default: .)"
    )
    parser.add_argument(
        "-M", "--model", required=True, help="Compiler model JSON file"
    )
    parser.add_argument(
        "-p", "--params", required=True, help="Project parameters JSON file"
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the unibuild CLI."""
    parser = argparse.ArgumentParser(
        prog="unibuild",
        description="Model-driven builder for embedded toolchains.",
        epilog="Run 'unibuild <command> --help' for command-specific help.",
    )
    from unibuild import __version__

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # unibuild build
    build_parser = subparsers.add_parser("build", help="Compile and link the project")
    add_common_args(build_parser)
    add_model_args(build_parser)
    build_parser.add_argument(
        "-m",
        "--mode",
        help="Build modes joined with '-' (fast, multhread, debug), e.g. fast-multhread",
    )
    build_parser.set_defaults(func=cmd_build)

    # unibuild print-commands
    print_parser = subparsers.add_parser(
        "print-commands", help="Print sample command lines without building"
    )
    add_common_args(print_parser)
    add_model_args(print_parser)
    print_parser.set_defaults(func=cmd_print_commands)

    # unibuild deps
    deps_parser = subparsers.add_parser(
        "deps", help="Scan include dependencies and maintain the dependency cache"
    )
    add_common_args(deps_parser)
    deps_parser.add_argument("-p", "--params", help="Project parameters JSON file")
    deps_parser.add_argument("-d", "--dump-dir", help="Dependency cache directory")
    deps_parser.add_argument(
        "-m",
        "--mode",
        dest="deps_mode",
        type=str.lower,
        choices=DEPS_MODES,
        default="normal",
        help="Cache mode (default: normal)",
    )
    deps_parser.set_defaults(func=cmd_deps)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    # Run the specified command
    result: int = args.func(args)
    return result


if __name__ == "__main__":
    sys.exit(main())
