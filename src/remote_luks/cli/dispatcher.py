"""CLI dispatcher.

Maps the command line to a registered workflow, loads the configuration
and runs the workflow, turning errors into exit codes.
"""

import argparse
import logging
import sys

from .. import __version__
from ..__logger__ import create_logger
from ..config import (
    Config,
    ConfigError,
    find_config_file,
    generate_example_config,
    load_config,
    require_configured,
)
from ..core.errors import EXIT_OK, RemoteLuksError, UnrecognizedCommand
from ..core.layers import Context
from ..core.runner import CommandRunner
from ..core.status import print_status
from ..core.workflows import WORKFLOWS, get_workflow, run_workflow
from .common import add_execution_args, add_verbosity_args, get_log_level

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130

# Handled here without a configuration
INIT_CONFIG = "init-config"


class CommandLineParser(argparse.ArgumentParser):
    """Argument parser reporting errors as unrecognized commands (exit 3)."""

    def error(self, message):
        raise UnrecognizedCommand(message)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser, one option per flagged workflow."""
    parser = CommandLineParser(
        prog="remote-luks",
        description="Manage remote LUKS file system containers via sshfs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "-h",
        "--help",
        action="store_true",
        help="Show this help and the current configuration",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )
    add_verbosity_args(parser)
    add_execution_args(parser)

    debug_group = parser.add_argument_group("Options (only for fine control/debugging)")
    for workflow in WORKFLOWS.values():
        if workflow.flags:
            debug_group.add_argument(
                *workflow.flags,
                dest="flag_commands",
                action="append_const",
                const=workflow.name,
                help=workflow.description,
            )

    parser.add_argument(
        "command",
        nargs="?",
        metavar="COMMAND",
        help="One of: " + ", ".join(list_commands()),
    )
    return parser


def list_commands() -> list[str]:
    """Commands selected by name rather than by an option flag."""
    names = [name for name, workflow in WORKFLOWS.items() if not workflow.flags]
    return names + [INIT_CONFIG]


def parse_args(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace:
    """Parse argv, reporting leftovers as unrecognized commands."""
    args, extra = parser.parse_known_args(argv)
    if extra:
        raise UnrecognizedCommand(f"Unrecognized option {extra[0]}")
    return args


def selected_command(args: argparse.Namespace) -> str | None:
    """Return the single command requested on the command line."""
    commands = list(args.flag_commands or [])
    if args.command:
        commands.append(args.command)
    if len(commands) > 1:
        raise UnrecognizedCommand(
            f"Only one command at a time, got: {', '.join(commands)}"
        )
    return commands[0] if commands else None


def _load_config(args: argparse.Namespace) -> Config:
    config_path = find_config_file(getattr(args, "config", None))
    if config_path is None:
        raise ConfigError(
            "No configuration file found. "
            "Create one with: remote-luks init-config > ~/.config/remote-luks/config.toml"
        )
    logger.debug("Loading configuration from: %s", config_path)
    config, warnings = load_config(config_path)
    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config


def show_help(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Print usage, the command list and the current configuration."""
    parser.print_help()
    print("")
    print("Commands:")
    for name in list_commands():
        workflow = WORKFLOWS.get(name)
        description = workflow.description if workflow else "Print an example configuration"
        print(f"  {name:<14}{description}")

    try:
        config = _load_config(args)
    except ConfigError as e:
        print("")
        print(f"No usable configuration: {e}")
        return

    print("")
    print("Current configuration:")
    print(f"  sshfs location      {config.remote.location}")
    print(f"  sshfs mount point   {config.sshfs_mount_point}/")
    print(f"  Image file          {config.image_file}")
    print(f"  LUKS FS mount point {config.image_mount_point}/")
    print(f"  Use key file        {config.key_file}")


def execute(args: argparse.Namespace, command: str) -> int:
    """Run the workflow registered under command.

    Returns:
        Exit code
    """
    workflow = get_workflow(command)
    config = _load_config(args)
    require_configured(config)
    create_logger(get_log_level(args), use_colors=config.general.use_colors)

    runner = CommandRunner(
        confirm=args.verbose or config.general.confirm_every_command,
        dry_run=args.dry_run,
    )
    ctx = Context.from_config(config, runner)
    try:
        run_workflow(ctx, workflow)
    finally:
        if workflow.mutates and (runner.confirm or config.general.show_status):
            print_status(ctx)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point for remote-luks CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    create_logger()
    parser = create_parser()
    try:
        args = parse_args(parser, argv)
        create_logger(get_log_level(args))

        if args.version:
            print(f"remote-luks {__version__}")
            return EXIT_OK
        if args.help:
            show_help(parser, args)
            return EXIT_OK

        command = selected_command(args)
        if command is None:
            parser.print_usage()
            return EXIT_OK
        if command == INIT_CONFIG:
            print(generate_example_config(), end="")
            return EXIT_OK

        return execute(args, command)

    except RemoteLuksError as e:
        logger.error("%s", e)
        return e.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return EXIT_INTERRUPTED
