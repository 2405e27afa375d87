"""Persisted loop device record.

The loop device allocated by one invocation must be found again by a later
one, possibly after a crash, to be detached. The path is kept as a single
line of text in the working directory; its presence means a loop device is
allocated.
"""

import logging
from pathlib import Path

from .errors import StateError

logger = logging.getLogger(__name__)


class StateStore:
    """Read and write the loop device identifier file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"StateStore({str(self.path)!r})"

    def load(self) -> str | None:
        """Return the stored loop device path, or None if nothing is stored."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateError(f"Cannot read {self.path}: {e}") from e
        device = text.strip()
        return device or None

    def save(self, device: str) -> None:
        """Store device, refusing to replace a different stored device."""
        current = self.load()
        if current is not None and current != device:
            raise StateError(
                f"Loop device {current} is already recorded in {self.path}, "
                "remove it first"
            )
        logger.debug("Remembering loop device %s in %s", device, self.path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(f"{device}\n", encoding="utf-8")
        except OSError as e:
            raise StateError(f"Cannot write {self.path}: {e}") from e

    def clear(self) -> None:
        """Forget the stored device. Does nothing if none is stored."""
        logger.debug("Forgetting loop device record %s", self.path)
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StateError(f"Cannot remove {self.path}: {e}") from e
