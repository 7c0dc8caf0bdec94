# =============================================================================
# Hangbridge -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    """Room connection lifecycle state.

    Typical flow: DISCONNECTED -> JOINING_CHAT -> SOCKET_CREATED ->
    JOINING_ROOM -> CONNECTED. REJOINING is entered on a reconnect event;
    a failed rejoin lands in DEGRADED (connected, state possibly stale).
    """

    DISCONNECTED = "disconnected"
    JOINING_CHAT = "joining_chat"
    SOCKET_CREATED = "socket_created"
    JOINING_ROOM = "joining_room"
    CONNECTED = "connected"
    REJOINING = "rejoining"
    DEGRADED = "degraded"


class SocketLogLevel(str, Enum):
    """Verbosity policy for the diagnostic socket-message log files."""

    OFF = "OFF"
    ON = "ON"
    DEBUG = "DEBUG"

    @classmethod
    def parse(cls, value: str | SocketLogLevel | None) -> SocketLogLevel:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "OFF").strip().upper())
        except ValueError:
            return cls.OFF


class EventKind(str, Enum):
    """Inbound room-socket notification category."""

    STATEFUL = "stateful"
    STATELESS = "stateless"
    SERVER = "server"
    ERROR = "error"
    RECONNECT = "reconnect"


@dataclass
class ReconnectConfig:
    """Backoff for re-opening a dropped socket transport.

    Attributes:
        base_delay: Initial delay in seconds before first retry.
        max_delay: Maximum delay cap in seconds.
        max_attempts: Max retries, ``-1`` for infinite.
        factor: Multiplier per attempt.
        jitter: Randomize delays by +/-10%.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = -1
    factor: float = 1.5
    jitter: bool = True


@dataclass(frozen=True, slots=True)
class SocketEvent:
    """A notification received from the room socket.

    Attributes:
        kind: Category, see :class:`EventKind`.
        name: Event name, e.g. ``"userJoined"``; empty for errors.
        payload: The decoded notification body as received.
        state_patch: JSON-Patch operations for stateful events, else ``None``.
    """

    kind: EventKind
    name: str = ""
    payload: Any = None
    state_patch: list[dict[str, Any]] | None = None


@dataclass
class MessageCursor:
    """Bookmark of how far a message channel has been consumed.

    ``last_timestamp`` is in epoch seconds, the unit the chat service uses
    for ``sentAt`` and its timestamp query parameters.
    """

    last_message_id: str | None = None
    last_timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastMessageId": self.last_message_id,
            "lastTimestamp": self.last_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MessageCursor:
        if not data:
            return cls()
        last_id = data.get("lastMessageId")
        ts = data.get("lastTimestamp")
        return cls(
            last_message_id=str(last_id) if last_id is not None else None,
            last_timestamp=int(ts) if ts is not None else None,
        )


def resolve_sender_id(sender: Any) -> str:
    """Return a plain sender ID from a bare ID or an object carrying ``uid``."""
    if sender is None:
        return ""
    if isinstance(sender, dict):
        uid = sender.get("uid") or sender.get("id") or ""
        return str(uid)
    uid = getattr(sender, "uid", None)
    if uid is not None:
        return str(uid)
    return str(sender)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """A chat message as returned by the chat service.

    Attributes:
        id: Service message ID.
        sent_at: Send time in the chat service's native epoch unit.
        sender: Bare sender ID, or a mapping/object with a ``uid``.
        text: Chat text; may be empty.
        is_private_message: True for one-to-one messages.
        recipient_id: Counterpart the private channel was fetched for.
        raw: The untouched service record.
    """

    id: str
    sent_at: int
    sender: Any
    text: str = ""
    is_private_message: bool = False
    recipient_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def sender_id(self) -> str:
        return resolve_sender_id(self.sender)


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    is_command: bool
    command: str = ""
    remainder: str = ""


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    is_connected: bool
    has_state: bool
    last_message_id: str | None
    last_timestamp: int | None


@dataclass(frozen=True, slots=True)
class CommandContext:
    """What a command handler knows about the message that triggered it."""

    sender: str
    full_message: ChatMessage
    chat_message: str


@dataclass(frozen=True, slots=True)
class CommandParams:
    """Single-argument calling convention for command handlers."""

    command: str
    args: str
    services: Any
    context: CommandContext
    response_channel: str = "request"


@dataclass
class CommandResult:
    success: bool
    response: str = ""
    should_respond: bool = False
    error: str | None = None
