"""Execution of external commands with optional confirmation and dry-run.

Every privileged step of a workflow goes through a CommandRunner. Commands
are argv lists handed directly to the process API, never shell strings.
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .. import __logger__
from .errors import DestructiveActionWarning, ExternalToolFailure, WorkflowAborted

logger = logging.getLogger(__name__)


class Confirmation(Enum):
    """Operator decision at a confirmation prompt."""

    PROCEED = "proceed"
    SKIP = "skip"
    ABORT = "abort"


@dataclass(frozen=True)
class Command:
    """A single external operation.

    Attributes:
        caption: Human readable description shown to the operator
        argv: Program and arguments
        privileged: Needs root, prefixed with sudo when not running as root
        capture: Capture stdout instead of passing it through
        confirm: Subject to interactive confirmation
    """

    caption: str
    argv: tuple[str, ...] = ()
    privileged: bool = False
    capture: bool = False
    confirm: bool = True

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(str(a) for a in self.argv))


@dataclass
class CommandResult:
    """Outcome of running a Command."""

    argv: list[str]
    returncode: int = 0
    stdout: str = ""
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Executor = Callable[[list[str], bool], CommandResult]
Prompt = Callable[[str], str]


def subprocess_executor(argv: list[str], capture: bool) -> CommandResult:
    """Run argv and wait for it to finish."""
    logger.debug("Executing: %s", argv)
    try:
        proc = subprocess.run(
            argv,
            stdout=subprocess.PIPE if capture else None,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.error("Command not found: %s", argv[0])
        return CommandResult(argv=argv, returncode=127)
    return CommandResult(
        argv=argv, returncode=proc.returncode, stdout=(proc.stdout or "").strip()
    )


def parse_confirmation(answer: str) -> Confirmation:
    """Map a prompt answer to a decision; anything unknown proceeds."""
    answer = answer.strip().lower()
    if answer in ("s", "skip"):
        return Confirmation.SKIP
    if answer in ("a", "abort", "q", "quit"):
        return Confirmation.ABORT
    return Confirmation.PROCEED


@dataclass
class CommandRunner:
    """Run commands, previewing and confirming them when asked to."""

    confirm: bool = False
    dry_run: bool = False
    executor: Executor = subprocess_executor
    prompt: Prompt = input
    is_root: bool = field(default_factory=lambda: os.geteuid() == 0)

    def _argv(self, command: Command) -> list[str]:
        argv = list(command.argv)
        if command.privileged and not self.is_root:
            argv = ["sudo"] + argv
        return argv

    def _ask(self, command: Command, argv: list[str]) -> Confirmation:
        console = __logger__.get_console()
        console.print(
            f"[bold yellow]>[/] [bold]{command.caption}[/]  "
            f"$ [yellow]{shlex.join(argv)}[/]",
            highlight=False,
        )
        try:
            answer = self.prompt("  [Enter] run, [s]kip, [a]bort ? ")
        except EOFError:
            # No operator attached
            return Confirmation.ABORT
        return parse_confirmation(answer)

    def notice(self, caption: str) -> None:
        """Show a caption without running anything."""
        if self.confirm and caption:
            __logger__.get_console().print(
                f"[bold yellow]>[/] [bold]{caption}[/]", highlight=False
            )
        else:
            logger.info("%s", caption)

    def warn(self, message: str) -> None:
        """Show a mandatory notice before an irreversible step."""
        logger.warning("WARNING: %s", DestructiveActionWarning(message))

    def run(self, command: Command, check: bool = True) -> CommandResult:
        """Execute command and return its result.

        Raises:
            WorkflowAborted: The operator aborted at the confirmation prompt
            ExternalToolFailure: The command failed and check is set
        """
        if not command.argv:
            self.notice(command.caption)
            return CommandResult(argv=[], skipped=True)

        argv = self._argv(command)

        if self.confirm and command.confirm and command.caption:
            decision = self._ask(command, argv)
            if decision is Confirmation.ABORT:
                raise WorkflowAborted(f"Aborted by operator at: {command.caption}")
            if decision is Confirmation.SKIP:
                logger.info("Skipped: %s", command.caption)
                return CommandResult(argv=argv, skipped=True)
        elif command.caption:
            logger.info("%s", command.caption)

        if self.dry_run:
            logger.info("[dry-run] $ %s", shlex.join(argv))
            return CommandResult(argv=argv, skipped=True)

        result = self.executor(argv, command.capture)
        if not result.ok:
            logger.error(
                "%s: '%s' exited with status %d",
                command.caption,
                shlex.join(argv),
                result.returncode,
            )
            if check:
                raise ExternalToolFailure(argv, result.returncode, command.caption)
        return result
