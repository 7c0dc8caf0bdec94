# =============================================================================
# Hangbridge -- Error Types
# =============================================================================


class BridgeError(Exception):
    """Base exception for all hangbridge errors."""


class ConfigError(BridgeError):
    """Required configuration missing or invalid."""


class ConnectError(BridgeError):
    """A connect step failed (chat join, socket open)."""


class RoomJoinError(ConnectError):
    """The room socket rejected or failed the join request."""


class RoomJoinTimeoutError(RoomJoinError):
    """The room join did not complete within the allowed time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Socket join room timeout after {timeout:g} seconds")


class ProtocolError(BridgeError):
    """Malformed or unexpected socket frame."""


class ChatServiceError(BridgeError):
    """Chat service request failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PatchError(BridgeError):
    """A JSON-Patch batch could not be applied."""


class InvalidPatchError(PatchError):
    """Operation is structurally invalid (unknown op, missing member)."""


class PatchPointerError(PatchError):
    """A JSON pointer does not resolve against the document."""


class PatchTestFailedError(PatchError):
    """A ``test`` operation did not match."""
