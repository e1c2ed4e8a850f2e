from __future__ import annotations

from collections.abc import Mapping


class BridgeError(Exception):
    """Base class for every failure surfaced by the session bridge."""


class InvalidArgumentError(BridgeError, ValueError):
    """Missing or malformed caller input, detected before any remote call."""


class UnusableError(BridgeError):
    def __init__(self, message: str = "Session is no longer usable.") -> None:
        super().__init__(message)


class NotRunningError(BridgeError):
    def __init__(self, message: str = "Room is not running.") -> None:
        super().__init__(message)


class AlreadyOpeningError(BridgeError):
    def __init__(self, message: str = "Room is already being opened.") -> None:
        super().__init__(message)


class AlreadyRunningError(BridgeError):
    """A host process is already listening on the control endpoint."""


class RemoteExecutionError(BridgeError):
    """A remote call came back with ``ok: false``.

    The message is the remote payload verbatim.
    """

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class ResolutionError(BridgeError):
    """A plugin (or its config) could not be resolved from the repositories."""

    def __init__(
        self,
        message: str,
        *,
        plugin_name: str | None = None,
        failures: Mapping[str, BaseException] | None = None,
    ) -> None:
        super().__init__(message)
        self.plugin_name = plugin_name
        self.failures: dict[str, BaseException] = dict(failures or {})


class RoomOpenError(BridgeError):
    """RoomOpener.open failed; the original failure is chained as ``__cause__``."""


class RoomCloseError(BridgeError):
    """RoomOpener.close failed; the original failure is chained as ``__cause__``."""
