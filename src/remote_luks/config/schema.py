"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
All sections are frozen: the configuration is built once at startup.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

KEY_FILE_NAME = "key_file.dont_loose_me"
STATE_FILE_NAME = "loop_device_name"
LOCK_FILE_NAME = ".remote-luks.lock"
IMAGE_SUFFIX = ".luks.img"


@dataclass(frozen=True)
class GeneralConfig:
    """General behaviour settings.

    Attributes:
        configured: Must be set once the user has adjusted the settings
        confirm_every_command: Show and confirm every command before running it
        use_colors: Colorize terminal output
        show_status: Print the status summary after every workflow
        load_kernel_modules: Load dm-crypt/dm-mod before touching volumes
    """

    configured: bool = False
    confirm_every_command: bool = False
    use_colors: bool = True
    show_status: bool = True
    load_kernel_modules: bool = True


@dataclass(frozen=True)
class ImageConfig:
    """Encrypted image settings.

    Attributes:
        size: Size of a newly created image (e.g., "500K", "10M", "1G")
        size_base: Unit multiplier base for size, 1000 or 1024
        prefix: Image file name prefix (".luks.img" is appended)
        volume_name: Device mapper name for the unlocked volume
        filesystem: Filesystem type created inside the volume
    """

    size: str = "10M"
    size_base: int = 1000
    prefix: str = "my_secure_remote"
    volume_name: str = "RemoteLUKS"
    filesystem: str = "ext4"


@dataclass(frozen=True)
class RemoteConfig:
    """Remote directory settings.

    Attributes:
        location: sshfs location (e.g., "user@server:/home/user/remote_luks/")
        sshfs_options: Extra sshfs arguments (e.g., ["-p", "12345"])
    """

    location: str = "user@server:/home/username/remote_luks/"
    sshfs_options: tuple[str, ...] = ()


@dataclass(frozen=True)
class PathsConfig:
    """Local paths.

    Attributes:
        working_dir: Directory for mount points, state and generated key
        key_file: User supplied key file (None to generate one)
        key_size: Size in bytes of a generated key file
    """

    working_dir: str = "~/remote_luks"
    key_file: Optional[str] = None
    key_size: int = 1024


@dataclass(frozen=True)
class RsyncConfig:
    """Data synchronization settings.

    Attributes:
        source: Directory to back up (trailing "/" copies only its contents)
        options: rsync options
        exclude: Patterns passed to rsync as --exclude
    """

    source: str = ""
    options: tuple[str, ...] = ("-avxHAWX", "--info=progress2", "--delete")
    exclude: tuple[str, ...] = ("lost+found",)


@dataclass(frozen=True)
class Config:
    """Root configuration object."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    rsync: RsyncConfig = field(default_factory=RsyncConfig)

    @property
    def working_dir(self) -> Path:
        return Path(self.paths.working_dir).expanduser()

    @property
    def sshfs_mount_point(self) -> Path:
        return self.working_dir / "mnt" / "sshfs"

    @property
    def image_mount_point(self) -> Path:
        return self.working_dir / "mnt" / "image"

    @property
    def image_file(self) -> Path:
        return self.sshfs_mount_point / f"{self.image.prefix}{IMAGE_SUFFIX}"

    @property
    def state_file(self) -> Path:
        return self.working_dir / STATE_FILE_NAME

    @property
    def lock_file(self) -> Path:
        return self.working_dir / LOCK_FILE_NAME

    @property
    def user_key_configured(self) -> bool:
        return bool(self.paths.key_file)

    @property
    def key_file(self) -> Path:
        """Key used to lock/unlock the volume, user supplied or generated."""
        if self.paths.key_file:
            return Path(self.paths.key_file).expanduser()
        return self.working_dir / KEY_FILE_NAME

    def mapper_node(self, mapper_dir: Path = Path("/dev/mapper")) -> Path:
        """Block node of the unlocked volume."""
        return mapper_dir / self.image.volume_name
