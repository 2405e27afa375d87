# pyright: standard

"""remote-luks: remote_luks/__util__.py
Common utility code shared among modules.
"""

import getpass
import os
import re
from pathlib import Path

MOUNTS_FILE = Path("/proc/self/mounts")

SIZE_UNITS = {"K": 1, "M": 2, "G": 3}
SIZE_BASES = (1000, 1024)

_SIZE_RE = re.compile(r"^(\d+)([KMG])$")
_MOUNT_ESCAPE_RE = re.compile(r"\\([0-7]{3})")


def parse_size(text: str, base: int = 1000) -> int:
    """Convert a size string like '10M' to a number of bytes.

    Args:
        text: Decimal integer followed by one of K, M or G
        base: Multiplier base, 1000 (default) or 1024

    Returns:
        Size in bytes

    Raises:
        ValueError: If the string or the base is not understood
    """
    if base not in SIZE_BASES:
        raise ValueError(f"Unsupported size base {base}, use 1000 or 1024")
    match = _SIZE_RE.match(text.strip())
    if match is None:
        raise ValueError(f"Invalid size {text!r}, expected e.g. 500K, 10M or 1G")
    number, unit = match.groups()
    return int(number) * base ** SIZE_UNITS[unit]


def _unescape_mount_field(field: str) -> str:
    # /proc/mounts encodes blanks and backslashes as octal escapes
    return _MOUNT_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), field)


def mounted_paths(mounts_file: Path = MOUNTS_FILE) -> set[Path]:
    """Return the set of mount targets listed in a mount table."""
    targets = set()
    try:
        content = Path(mounts_file).read_text(encoding="utf-8")
    except FileNotFoundError:
        return targets
    for line in content.splitlines():
        fields = line.split()
        if len(fields) >= 2:
            targets.add(Path(_unescape_mount_field(fields[1])))
    return targets


def is_mounted(path: Path, mounts_file: Path = MOUNTS_FILE) -> bool:
    """Check whether path is currently an active mount point.

    The mount table lists targets with symlinks resolved, so path is
    resolved the same way before the lookup.
    """
    return Path(os.path.realpath(path)) in mounted_paths(mounts_file)


def invoking_user() -> str:
    """Return the login of the user who started us, looking through sudo."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"--[ {caption} ]--"
