"""Core operations that are not layer open/close steps.

Creating key and image, formatting, taking ownership, synchronizing the
backup data and recovering from inconsistent loop device state.
"""

import logging
import os

from .. import __util__
from .errors import ConfigurationError, ConnectivityFailure, LayerStateError
from .layers import DRY_RUN_LOOP_DEVICE, Context
from .runner import Command

logger = logging.getLogger(__name__)

KERNEL_MODULES = ("dm-crypt", "dm-mod")
KEY_UMASK = 0o077


def load_kernel_modules(ctx: Context) -> None:
    """Make sure the device mapper crypt target is available."""
    if not ctx.config.general.load_kernel_modules:
        logger.debug("Kernel module loading disabled")
        return
    for module in KERNEL_MODULES:
        ctx.runner.run(
            Command(
                f"Load kernel module {module}",
                ("modprobe", module),
                privileged=True,
                confirm=False,
            )
        )


def require_remote_connected(ctx: Context) -> None:
    """Fail before any mutation if the remote directory is not mounted."""
    mount_point = ctx.config.sshfs_mount_point
    if ctx.is_mounted(mount_point):
        return
    if ctx.dry_run:
        logger.info("Dry run: remote directory %s is not mounted", mount_point)
        return
    raise ConnectivityFailure(
        f"Image file {ctx.config.image_file} not found: "
        f"{mount_point} is not mounted, connect first (-s)"
    )


def create_key_file(ctx: Context) -> bool:
    """Generate a random key file unless one exists or the user supplies one.

    Returns:
        True if a new key file was written.
    """
    config = ctx.config
    if config.user_key_configured:
        if not config.key_file.is_file():
            raise ConfigurationError(f"Configured key file {config.key_file} not found")
        logger.info("Using user key file %s", config.key_file)
        return False

    key_file = config.key_file
    if key_file.exists():
        ctx.runner.notice("Key file already existing.")
        logger.info("Remove %s, if you want me to create a new key", key_file)
        return False

    ctx.runner.warn("This may overwrite your existing key file!")
    # dd creates the key readable by its owner only
    old_umask = os.umask(KEY_UMASK)
    try:
        result = ctx.runner.run(
            Command(
                "Create key file",
                (
                    "dd",
                    "if=/dev/urandom",
                    f"of={key_file}",
                    f"bs={config.paths.key_size}",
                    "count=1",
                    "iflag=fullblock",
                ),
            )
        )
    finally:
        os.umask(old_umask)
    if result.skipped:
        return False
    ctx.runner.run(Command("Protect key file", ("chmod", "600", str(key_file))))
    return True


def create_image_file(ctx: Context) -> bool:
    """Allocate the image file on the remote mount to the configured size."""
    image = ctx.config.image
    size = __util__.parse_size(image.size, image.size_base)
    ctx.runner.warn(f"This may overwrite your LUKS container {ctx.config.image_file}!")
    result = ctx.runner.run(
        Command(
            f"Create container ({size} bytes)",
            (
                "dd",
                "if=/dev/zero",
                f"of={ctx.config.image_file}",
                "bs=1",
                "count=0",
                f"seek={size}",
            ),
        )
    )
    return not result.skipped


def format_volume(ctx: Context) -> bool:
    """Write a new LUKS header to the loop device."""
    device = ctx.state.load() or DRY_RUN_LOOP_DEVICE
    ctx.runner.warn(f"Formatting {device} destroys everything stored in it!")
    result = ctx.runner.run(
        Command(
            "Format image",
            (
                "cryptsetup",
                "luksFormat",
                device,
                "--key-file",
                str(ctx.config.key_file),
            ),
            privileged=True,
        )
    )
    return not result.skipped


def format_filesystem(ctx: Context) -> bool:
    """Create the filesystem inside the unlocked volume."""
    image = ctx.config.image
    result = ctx.runner.run(
        Command(
            "Format FS",
            (
                f"mkfs.{image.filesystem}",
                "-L",
                image.volume_name,
                str(ctx.mapper_node),
            ),
            privileged=True,
        )
    )
    return not result.skipped


def take_ownership(ctx: Context) -> bool:
    """Hand the mounted tree to the invoking user."""
    result = ctx.runner.run(
        Command(
            "Take ownership",
            (
                "chown",
                "-R",
                __util__.invoking_user(),
                str(ctx.config.image_mount_point),
            ),
            privileged=True,
        )
    )
    return not result.skipped


def sync_data(ctx: Context) -> bool:
    """Mirror the configured source directory into the mounted filesystem."""
    rsync = ctx.config.rsync
    target = ctx.config.image_mount_point
    if not rsync.source:
        raise ConfigurationError("No rsync source configured")
    if not ctx.is_mounted(target):
        if not ctx.dry_run:
            # Never copy into the bare mount point directory
            raise LayerStateError(f"Backup target {target} is not mounted")
        logger.debug("Dry run: assuming %s is mounted", target)

    argv = ["rsync", *rsync.options]
    argv += [f"--exclude={pattern}" for pattern in rsync.exclude]
    argv += [rsync.source, str(target)]

    result = ctx.runner.run(Command("Backup data", tuple(argv)))
    return not result.skipped


def remove_all_loop_devices(ctx: Context) -> bool:
    """Detach every loop device on the system and forget the stored one."""
    ctx.runner.warn("This detaches ALL loop devices on this system!")
    result = ctx.runner.run(
        Command(
            "Remove all loop devices",
            ("losetup", "--detach-all"),
            privileged=True,
        )
    )
    if not ctx.dry_run:
        ctx.state.clear()
    return not result.skipped
