"""Error types raised while orchestrating the resource stack.

Every error carries the process exit code the CLI reports for it.
"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNCONFIGURED = -1
EXIT_NOT_CONNECTED = 2
EXIT_UNRECOGNIZED = 3
EXIT_LOCKED = 4
EXIT_ABORTED = 5


class RemoteLuksError(Exception):
    """Base class for all remote-luks errors."""

    exit_code = EXIT_FAILURE


class ConfigurationError(RemoteLuksError):
    """A required setup step has not been completed."""

    exit_code = EXIT_UNCONFIGURED


class ConnectivityFailure(RemoteLuksError):
    """The remote directory is not mounted but an operation needs it."""

    exit_code = EXIT_NOT_CONNECTED


class UnrecognizedCommand(RemoteLuksError):
    """No workflow is registered under the requested name."""

    exit_code = EXIT_UNRECOGNIZED


class WorkflowLocked(RemoteLuksError):
    """Another invocation holds the working directory lock."""

    exit_code = EXIT_LOCKED


class WorkflowAborted(RemoteLuksError):
    """The operator chose to abort at a confirmation prompt."""

    exit_code = EXIT_ABORTED


class LayerStateError(RemoteLuksError):
    """A layer operation would break the stacking order."""


class StateError(RemoteLuksError):
    """The persisted loop device record cannot be read or written."""


class DestructiveActionWarning(UserWarning):
    """Notice shown before a step that destroys data. Never raised."""


class ExternalToolFailure(RemoteLuksError):
    """An external tool exited with a non-zero status."""

    def __init__(self, argv: list[str], returncode: int, caption: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.caption = caption
        what = caption or " ".join(self.argv)
        super().__init__(f"{what} failed with exit status {returncode}")

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.returncode or EXIT_FAILURE
