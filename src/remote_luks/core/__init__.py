"""Core orchestration for remote-luks.

Layers, operations and workflows live in their own modules; the error
types are re-exported here since every caller needs them.
"""

from .errors import (
    ConfigurationError,
    ConnectivityFailure,
    DestructiveActionWarning,
    ExternalToolFailure,
    LayerStateError,
    RemoteLuksError,
    StateError,
    UnrecognizedCommand,
    WorkflowAborted,
    WorkflowLocked,
)

__all__ = [
    "RemoteLuksError",
    "ConfigurationError",
    "ConnectivityFailure",
    "UnrecognizedCommand",
    "WorkflowLocked",
    "WorkflowAborted",
    "LayerStateError",
    "StateError",
    "ExternalToolFailure",
    "DestructiveActionWarning",
]
