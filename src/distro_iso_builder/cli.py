"""Command line entry point."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .builder import DistroBuilder, ValidationFailed, render_build_plan
from .config import (
    TEMPLATES,
    ConfigError,
    DistroConfig,
    ProgressVerbosity,
    default_config,
    dump_config,
    load_config,
    save_config,
)
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .progress import ProgressReporter
from .validator import ConfigValidator

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_INVALID_CONFIG = 2

DEFAULT_WORK_DIR = "./work_dir"
DEFAULT_OUTPUT_DIR = "./output"


def _load(args: argparse.Namespace) -> DistroConfig:
    if getattr(args, "minimal", False):
        config = default_config()
    elif args.config:
        config = load_config(args.config)
    else:
        raise ConfigError("No configuration provided! Use --minimal or provide a config file.")
    if getattr(args, "name", None):
        config = config.with_updates(name=args.name)
    return config


def _verbosity(args: argparse.Namespace, config: DistroConfig) -> ProgressVerbosity:
    if args.verbose:
        return ProgressVerbosity.VERBOSE
    if args.quiet:
        return ProgressVerbosity.QUIET
    return config.build_options.verbosity


def cmd_build(args: argparse.Namespace) -> int:
    config = _load(args)
    verbosity = _verbosity(args, config)
    configure_logging(
        log_path=args.log,
        level=logging.DEBUG if verbosity is ProgressVerbosity.VERBOSE else logging.INFO,
    )

    work_dir = Path(args.work_dir)
    output_dir = Path(args.output_dir)
    if args.plan:
        for line in render_build_plan(config, work_dir, output_dir):
            print(line)
        return EXIT_OK

    builder = DistroBuilder(
        config,
        work_dir,
        output_dir,
        dry_run=args.dry_run,
        reporter=ProgressReporter(verbosity=verbosity),
    )
    try:
        result = asyncio.run(builder.build())
    except ValidationFailed as exc:
        print(exc.result.summary(), file=sys.stderr)
        return EXIT_INVALID_CONFIG
    if not result.success:
        return EXIT_BUILD_FAILED
    print(f"Distro build complete! ISO created at: {result.iso_path}")
    return EXIT_OK


def cmd_validate(args: argparse.Namespace) -> int:
    config = _load(args)
    result = ConfigValidator().validate(config)
    print(result.summary())
    return EXIT_OK if result.is_valid else EXIT_INVALID_CONFIG


def cmd_generate_config(args: argparse.Namespace) -> int:
    factory = TEMPLATES.get(args.template)
    if factory is None:
        raise ConfigError(f"Unknown template type: {args.template}")
    config = factory()
    if args.output:
        destination = save_config(config, args.output)
        print(f"Configuration template written to {destination}")
    else:
        print(dump_config(config), end="")
    return EXIT_OK


def cmd_tui(args: argparse.Namespace) -> int:
    from .tui.app import run

    config = load_config(args.config) if args.config else default_config()
    run(config, work_dir=Path(args.work_dir), output_dir=Path(args.output_dir))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="distro-iso-builder", description="Build a custom Linux distribution ISO")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build a custom Linux distribution ISO")
    source = build.add_mutually_exclusive_group()
    source.add_argument("-c", "--config", help="Configuration file (YAML or JSON)")
    source.add_argument("--minimal", action="store_true", help="Use the default minimal configuration")
    build.add_argument("-n", "--name", help="Override the distribution name")
    build.add_argument("-w", "--work-dir", default=DEFAULT_WORK_DIR)
    build.add_argument("-o", "--output-dir", default=DEFAULT_OUTPUT_DIR)
    build.add_argument(
        "--dry-run",
        action="store_true",
        help="Log external commands without running them (an existing work directory is reused, not wiped)",
    )
    build.add_argument("--plan", action="store_true", help="Print the build plan and exit")
    build.add_argument("--log", default=DEFAULT_LOG_PATH)
    noise = build.add_mutually_exclusive_group()
    noise.add_argument("-v", "--verbose", action="store_true")
    noise.add_argument("-q", "--quiet", action="store_true")
    build.set_defaults(func=cmd_build)

    validate = sub.add_parser("validate", help="Validate a configuration file")
    validate.add_argument("-c", "--config", required=True)
    validate.set_defaults(func=cmd_validate)

    generate = sub.add_parser("generate-config", help="Write a configuration template")
    generate.add_argument("-o", "--output", help="Output file (.yaml, .yml or .json)")
    generate.add_argument("--template", default="minimal", choices=sorted(TEMPLATES))
    generate.set_defaults(func=cmd_generate_config)

    tui = sub.add_parser("tui", help="Interactive build monitor")
    tui.add_argument("-c", "--config")
    tui.add_argument("-w", "--work-dir", default=DEFAULT_WORK_DIR)
    tui.add_argument("-o", "--output-dir", default=DEFAULT_OUTPUT_DIR)
    tui.set_defaults(func=cmd_tui)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG


if __name__ == "__main__":
    raise SystemExit(main())
