"""Named workflows and their transactional execution.

A workflow is a fixed sequence of steps: opening a layer, closing a layer,
or running an operation. Workflows are looked up by name in a registry,
which also drives the command line options and the help text.

When a step fails, the remaining steps are skipped and every layer opened
by the same run is closed again, topmost first, before the error is
re-raised.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from filelock import FileLock, Timeout

from .. import __util__
from . import operations, status
from .errors import RemoteLuksError, UnrecognizedCommand, WorkflowLocked
from .layers import (
    ENCRYPTED_VOLUME,
    FILESYSTEM_MOUNT,
    LOOP_DEVICE,
    REMOTE_MOUNT,
    Context,
    ResourceLayer,
)

logger = logging.getLogger(__name__)

OPEN = "open"
CLOSE = "close"
ACTION = "action"


@dataclass(frozen=True)
class Step:
    """One element of a workflow."""

    kind: str
    caption: str
    layer: Optional[ResourceLayer] = None
    action: Optional[Callable[[Context], object]] = None

    @classmethod
    def open(cls, layer: ResourceLayer) -> "Step":
        return cls(OPEN, f"Open {layer.name}", layer=layer)

    @classmethod
    def close(cls, layer: ResourceLayer) -> "Step":
        return cls(CLOSE, f"Close {layer.name}", layer=layer)

    @classmethod
    def run(cls, caption: str, action: Callable[[Context], object]) -> "Step":
        return cls(ACTION, caption, action=action)


@dataclass(frozen=True)
class Workflow:
    """A named, immutable sequence of steps.

    Attributes:
        name: Command name (e.g., "backup")
        description: One line help text
        steps: Steps in execution order
        flags: Command line options selecting this workflow (e.g., ("-s", "--connect"))
        mutates: Changes system state and must hold the working directory lock
        needs_crypto: Loads the dm-crypt kernel modules first
    """

    name: str
    description: str
    steps: tuple[Step, ...]
    flags: tuple[str, ...] = ()
    mutates: bool = True
    needs_crypto: bool = False


STACK = (REMOTE_MOUNT, LOOP_DEVICE, ENCRYPTED_VOLUME, FILESYSTEM_MOUNT)

OPEN_ALL = tuple(Step.open(layer) for layer in STACK)
CLOSE_ALL = tuple(Step.close(layer) for layer in reversed(STACK))

CREATE_IMAGE = (
    Step.run("Check remote connection", operations.require_remote_connected),
    Step.run("Create key file", operations.create_key_file),
    Step.run("Create image file", operations.create_image_file),
    Step.open(LOOP_DEVICE),
    Step.run("Format encrypted volume", operations.format_volume),
    Step.open(ENCRYPTED_VOLUME),
    Step.run("Format file system", operations.format_filesystem),
    Step.open(FILESYSTEM_MOUNT),
    Step.run("Take ownership", operations.take_ownership),
)


def _build_registry(workflows: Iterable[Workflow]) -> dict[str, Workflow]:
    """Index workflows by name, rejecting duplicate names and flags."""
    registry: dict[str, Workflow] = {}
    seen_flags: set[str] = set()
    for workflow in workflows:
        if workflow.name in registry:
            raise ValueError(f"Duplicate workflow name: {workflow.name}")
        duplicate = seen_flags.intersection(workflow.flags)
        if duplicate:
            raise ValueError(f"Duplicate workflow flags: {sorted(duplicate)}")
        if not workflow.steps:
            raise ValueError(f"Workflow {workflow.name} has no steps")
        seen_flags.update(workflow.flags)
        registry[workflow.name] = workflow
    return registry


WORKFLOWS = _build_registry(
    [
        Workflow(
            "open",
            "Connect, unlock and mount the remote container",
            OPEN_ALL,
            needs_crypto=True,
        ),
        Workflow(
            "close",
            "Unmount, lock and disconnect the remote container",
            CLOSE_ALL,
        ),
        Workflow(
            "create",
            "Create and format a new remote container (remote dir must be mounted)",
            CREATE_IMAGE + CLOSE_ALL,
            needs_crypto=True,
        ),
        Workflow(
            "backup",
            "Open the container, back up the data and close it again",
            OPEN_ALL + (Step.run("Backup data", operations.sync_data),) + CLOSE_ALL,
            needs_crypto=True,
        ),
        Workflow(
            "create-loop",
            "Create a new loop device",
            (Step.open(LOOP_DEVICE),),
            flags=("-l", "--create-loop"),
        ),
        Workflow(
            "connect",
            "Mount remote directory via sshfs",
            (Step.open(REMOTE_MOUNT),),
            flags=("-s", "--connect"),
        ),
        Workflow(
            "open-volume",
            "Create a loop device and open the LUKS container",
            (Step.open(LOOP_DEVICE), Step.open(ENCRYPTED_VOLUME)),
            flags=("-o", "--open"),
            needs_crypto=True,
        ),
        Workflow(
            "mount",
            "Mount LUKS file system",
            (Step.open(FILESYSTEM_MOUNT),),
            flags=("-m", "--mount"),
        ),
        Workflow(
            "rsync",
            "Copy data to mounted LUKS file system",
            (Step.run("Backup data", operations.sync_data),),
            flags=("-b", "--rsync"),
        ),
        Workflow(
            "umount",
            "Unmount LUKS file system",
            (Step.close(FILESYSTEM_MOUNT),),
            flags=("-u", "--umount"),
        ),
        Workflow(
            "close-volume",
            "Close LUKS container",
            (Step.close(ENCRYPTED_VOLUME),),
            flags=("-c", "--close"),
        ),
        Workflow(
            "disconnect",
            "Unmount remote sshfs directory",
            (Step.close(REMOTE_MOUNT),),
            flags=("-d", "--disconnect"),
        ),
        Workflow(
            "remove-loop",
            "Remove the loop device",
            (Step.close(LOOP_DEVICE),),
            flags=("-r", "--remove-loop"),
        ),
        Workflow(
            "remove-all-loops",
            "Remove all unused loop devices (system wide)",
            (Step.run("Remove all loop devices", operations.remove_all_loop_devices),),
            flags=("-D", "--remove-all-loops"),
        ),
        Workflow(
            "create-image",
            "Create remote LUKS container and leave it mounted",
            CREATE_IMAGE,
            flags=("-x", "--create-image"),
            needs_crypto=True,
        ),
        Workflow(
            "create-key",
            "Create a key file",
            (Step.run("Create key file", operations.create_key_file),),
            flags=("-k", "--create-key"),
        ),
        Workflow(
            "status",
            "Show the state of remote directory, loop device and container",
            (Step.run("Show status", status.print_status),),
            mutates=False,
        ),
    ]
)


def get_workflow(name: str) -> Workflow:
    """Look up a workflow by command name."""
    try:
        return WORKFLOWS[name]
    except KeyError:
        raise UnrecognizedCommand(f"Unrecognized option {name}") from None


def _unwind(ctx: Context, opened: list[ResourceLayer]) -> None:
    """Close the layers opened by a failed run, topmost first."""
    for layer in reversed(opened):
        logger.warning("Rolling back: closing %s", layer.name)
        try:
            layer.close(ctx)
        except RemoteLuksError as e:
            # Lower layers cannot be closed under this one
            logger.error("Could not close %s: %s", layer.name, e)
            break


def execute_steps(ctx: Context, steps: Iterable[Step]) -> None:
    """Run steps in order, rolling back opened layers on the first failure."""
    opened: list[ResourceLayer] = []
    try:
        for step in steps:
            logger.debug("Step: %s", step.caption)
            if step.kind == OPEN:
                if step.layer.open(ctx):
                    opened.append(step.layer)
            elif step.kind == CLOSE:
                step.layer.close(ctx)
                if step.layer in opened:
                    opened.remove(step.layer)
            else:
                step.action(ctx)
    except RemoteLuksError as e:
        logger.error("%s", e)
        _unwind(ctx, opened)
        raise
    except BaseException:
        # Ctrl-C and unexpected errors
        logger.error("Workflow interrupted")
        _unwind(ctx, opened)
        raise


def _run_steps(ctx: Context, workflow: Workflow) -> None:
    logger.info(__util__.log_heading(f"{workflow.name} started at {time.ctime()}"))
    if workflow.needs_crypto:
        operations.load_kernel_modules(ctx)
    execute_steps(ctx, workflow.steps)
    logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))


def run_workflow(ctx: Context, workflow: Workflow) -> None:
    """Run a workflow, holding the working directory lock if it mutates state.

    Raises:
        WorkflowLocked: Another invocation is running against the same
            working directory
        RemoteLuksError: A step failed (after rolling back)
    """
    logger.debug("Running workflow %s", workflow.name)
    if not workflow.mutates:
        execute_steps(ctx, workflow.steps)
        return
    if ctx.dry_run:
        # A dry run leaves the working directory untouched
        _run_steps(ctx, workflow)
        return

    working_dir = ctx.config.working_dir
    if not working_dir.is_dir():
        logger.info("Creating directory: %s", working_dir)
        working_dir.mkdir(parents=True, exist_ok=True)

    lock = FileLock(ctx.config.lock_file, timeout=0)
    try:
        with lock:
            _run_steps(ctx, workflow)
    except Timeout:
        raise WorkflowLocked(
            f"Another remote-luks run holds {ctx.config.lock_file}, try again later"
        ) from None
