"""Read-only inspection of the resource stack.

The report is built from the live system state (mount table, device mapper
nodes, files) and the persisted loop device record, never from what the
last workflow believes it did.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import StateError
from .layers import Context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusReport:
    """Snapshot of the current state of each layer."""

    loop_device: Optional[str]
    remote_mounted: bool
    image_present: bool
    volume_unlocked: bool
    filesystem_mounted: bool

    def lines(self) -> list[str]:
        """Human readable summary, one fact per line."""
        lines = []
        if self.loop_device:
            lines.append(f"Current loop device: {self.loop_device}")
        if not self.remote_mounted:
            lines.append("Remote directory not mounted")
        else:
            lines.append("Remote directory mounted")
            if self.image_present:
                lines.append("Image file found")
            else:
                lines.append("Image file not found")
        if self.volume_unlocked:
            lines.append("LUKS container unlocked")
        if self.filesystem_mounted:
            lines.append("LUKS container mounted")
        return lines


def collect_status(ctx: Context) -> StatusReport:
    """Inspect the system without changing anything."""
    config = ctx.config
    try:
        loop_device = ctx.state.load()
    except StateError as e:
        logger.warning("%s", e)
        loop_device = None

    remote_mounted = ctx.is_mounted(config.sshfs_mount_point)
    # Only look for the image on a live mount, an empty mount point says nothing
    image_present = remote_mounted and config.image_file.is_file()

    return StatusReport(
        loop_device=loop_device,
        remote_mounted=remote_mounted,
        image_present=image_present,
        volume_unlocked=ctx.mapper_node.exists(),
        filesystem_mounted=ctx.is_mounted(config.image_mount_point),
    )


def print_status(ctx: Context) -> StatusReport:
    """Collect and print the status summary."""
    report = collect_status(ctx)
    print("")
    print("Status:")
    for line in report.lines():
        print(line)
    return report
