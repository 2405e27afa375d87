"""The four stacked resources and how each one is opened and closed.

    RemoteMount       sshfs mount of the remote directory
    LoopDevice        loop device bound to the image file on that mount
    EncryptedVolume   LUKS volume unlocked from the loop device
    FilesystemMount   filesystem of the unlocked volume mounted locally

A layer is only opened on top of an open layer beneath it and only closed
when the layer above it is closed. Opening an open layer and closing a
closed one are both no-ops, so interrupted workflows can simply be re-run.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .. import __util__
from ..config.schema import Config
from .errors import ConnectivityFailure, ExternalToolFailure, LayerStateError
from .runner import Command, CommandRunner
from .state import StateStore

logger = logging.getLogger(__name__)

DRY_RUN_LOOP_DEVICE = "/dev/loopN"


@dataclass
class Context:
    """Mutable orchestration state handed to every step of a workflow."""

    config: Config
    runner: CommandRunner
    state: StateStore
    mounts_file: Path = __util__.MOUNTS_FILE
    mapper_dir: Path = Path("/dev/mapper")

    @classmethod
    def from_config(cls, config: Config, runner: CommandRunner, **kwargs) -> "Context":
        return cls(
            config=config, runner=runner, state=StateStore(config.state_file), **kwargs
        )

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    @property
    def mapper_node(self) -> Path:
        return self.config.mapper_node(self.mapper_dir)

    def is_mounted(self, path: Path) -> bool:
        return __util__.is_mounted(path, self.mounts_file)

    def ensure_directory(self, path: Path, caption: str) -> None:
        """Create a mount point directory if it is missing."""
        if not path.is_dir():
            self.runner.run(Command(caption, ("mkdir", "-p", str(path))))


class ResourceLayer:
    """Generic structure of a stacked resource."""

    name = "layer"

    def __init__(self) -> None:
        self.below: Optional[ResourceLayer] = None
        self.above: Optional[ResourceLayer] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def is_open(self, ctx: Context) -> bool:
        raise NotImplementedError

    def _open(self, ctx: Context) -> bool:
        raise NotImplementedError

    def _close(self, ctx: Context) -> bool:
        raise NotImplementedError

    def _below_missing(self, ctx: Context) -> Exception:
        return LayerStateError(f"Cannot open {self.name}: {self.below.name} is not open")

    def open(self, ctx: Context) -> bool:
        """Open this layer.

        Returns:
            True if this call opened the layer, False if it was already open
            or the operator skipped the step.
        """
        if self.is_open(ctx):
            logger.info("%s is already open", self.name)
            return False
        if self.below is not None and not self.below.is_open(ctx):
            if not ctx.dry_run:
                raise self._below_missing(ctx)
            logger.debug("Dry run: assuming %s is open", self.below.name)
        return self._open(ctx)

    def close(self, ctx: Context) -> bool:
        """Close this layer.

        Returns:
            True if this call closed the layer, False if it was not open.
        """
        if not self.is_open(ctx):
            logger.info("%s is not open, nothing to close", self.name)
            return False
        if self.above is not None and self.above.is_open(ctx):
            if not ctx.dry_run:
                raise LayerStateError(
                    f"Cannot close {self.name}: {self.above.name} is still open"
                )
            logger.debug("Dry run: assuming %s is closed", self.above.name)
        return self._close(ctx)


class RemoteMount(ResourceLayer):
    """The remote directory mounted with sshfs."""

    name = "remote directory"

    def is_open(self, ctx: Context) -> bool:
        return ctx.is_mounted(ctx.config.sshfs_mount_point)

    def _open(self, ctx: Context) -> bool:
        mount_point = ctx.config.sshfs_mount_point
        ctx.ensure_directory(mount_point, "Create sshfs mount point")
        result = ctx.runner.run(
            Command(
                "Mount remote dir",
                (
                    "sshfs",
                    *ctx.config.remote.sshfs_options,
                    ctx.config.remote.location,
                    str(mount_point),
                ),
            )
        )
        return not result.skipped

    def _close(self, ctx: Context) -> bool:
        result = ctx.runner.run(
            Command(
                "Unmount remote directory",
                ("fusermount", "-u", str(ctx.config.sshfs_mount_point)),
            )
        )
        return not result.skipped


class LoopDevice(ResourceLayer):
    """A loop device bound to the image file, remembered in the StateStore."""

    name = "loop device"

    def is_open(self, ctx: Context) -> bool:
        return ctx.state.load() is not None

    def _below_missing(self, ctx: Context) -> Exception:
        return ConnectivityFailure(
            f"Remote directory {ctx.config.sshfs_mount_point} is not mounted, "
            "connect first (-s)"
        )

    def _open(self, ctx: Context) -> bool:
        image = ctx.config.image_file
        result = ctx.runner.run(
            Command(
                "Create loop device",
                ("losetup", "--find", "--show", str(image)),
                privileged=True,
                capture=True,
            )
        )
        if result.skipped:
            return False

        device = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        if not device:
            raise ExternalToolFailure(
                result.argv, 1, "losetup did not report a loop device"
            )
        logger.info("Loop device %s bound to %s", device, image)
        ctx.state.save(device)
        return True

    def _close(self, ctx: Context) -> bool:
        device = ctx.state.load()
        result = ctx.runner.run(
            Command(
                "Remove loop device",
                ("losetup", "--detach", device),
                privileged=True,
            )
        )
        if result.skipped:
            return False
        ctx.state.clear()
        return True


class EncryptedVolume(ResourceLayer):
    """The LUKS volume on the loop device, unlocked under a fixed name."""

    name = "encrypted volume"

    def is_open(self, ctx: Context) -> bool:
        return ctx.mapper_node.exists()

    def _open(self, ctx: Context) -> bool:
        device = ctx.state.load() or DRY_RUN_LOOP_DEVICE
        result = ctx.runner.run(
            Command(
                "Unlock/open image",
                (
                    "cryptsetup",
                    "luksOpen",
                    device,
                    ctx.config.image.volume_name,
                    "--key-file",
                    str(ctx.config.key_file),
                ),
                privileged=True,
            )
        )
        return not result.skipped

    def _close(self, ctx: Context) -> bool:
        result = ctx.runner.run(
            Command(
                "Close LUKS container",
                ("cryptsetup", "luksClose", ctx.config.image.volume_name),
                privileged=True,
            )
        )
        return not result.skipped


class FilesystemMount(ResourceLayer):
    """The filesystem of the unlocked volume mounted in the working directory."""

    name = "file system"

    def is_open(self, ctx: Context) -> bool:
        return ctx.is_mounted(ctx.config.image_mount_point)

    def _open(self, ctx: Context) -> bool:
        mount_point = ctx.config.image_mount_point
        ctx.ensure_directory(mount_point, "Create image mount point")
        result = ctx.runner.run(
            Command(
                "Mount file system",
                ("mount", str(ctx.mapper_node), str(mount_point)),
                privileged=True,
            )
        )
        return not result.skipped

    def _close(self, ctx: Context) -> bool:
        result = ctx.runner.run(
            Command(
                "Unmount file system",
                ("umount", str(ctx.config.image_mount_point)),
                privileged=True,
            )
        )
        return not result.skipped


def build_stack() -> tuple[RemoteMount, LoopDevice, EncryptedVolume, FilesystemMount]:
    """Create the four layers linked bottom to top."""
    layers = (RemoteMount(), LoopDevice(), EncryptedVolume(), FilesystemMount())
    for lower, upper in zip(layers, layers[1:]):
        lower.above = upper
        upper.below = lower
    return layers


REMOTE_MOUNT, LOOP_DEVICE, ENCRYPTED_VOLUME, FILESYSTEM_MOUNT = build_stack()
