"""Hangbridge: a bot bridging a CometChat group and a real-time room socket.

Usage::

    from hangbridge import BridgeConfig, build_bridge

    config = BridgeConfig.from_env(".env")
    bridge = build_bridge(config)
    await bridge.run(stop_event)

Custom commands::

    from hangbridge import CommandResult

    async def handle_hello(params):
        await params.services.chat.send_response(
            "Hello!", sender=params.context.sender
        )
        return CommandResult(success=True, response="Hello!", should_respond=True)

    bridge.services.registry.register("hello", handle_hello, description="Say hi")
"""

from ._version import __version__
from .bot import Bridge, Services, build_bridge
from .chat import CometChatClient
from .commands import CommandDispatcher, CommandRegistry, parse_command
from .config import BridgeConfig
from .connection import RoomConnection
from .cursors import CursorStore
from .errors import (
    BridgeError,
    ChatServiceError,
    ConfigError,
    ConnectError,
    InvalidPatchError,
    PatchError,
    PatchPointerError,
    PatchTestFailedError,
    ProtocolError,
    RoomJoinError,
    RoomJoinTimeoutError,
)
from .patch import apply_patch
from .poller import MessagePoller
from .socket_log import SocketMessageLogger
from .synchronizer import PatchSynchronizer
from .types import (
    ChatMessage,
    CommandContext,
    CommandParams,
    CommandResult,
    ConnectionState,
    ConnectionStatus,
    MessageCursor,
    ParsedCommand,
    SocketEvent,
    SocketLogLevel,
)

__all__ = [
    "__version__",
    "build_bridge",
    "Bridge",
    "Services",
    "BridgeConfig",
    "CometChatClient",
    "RoomConnection",
    "MessagePoller",
    "CursorStore",
    "PatchSynchronizer",
    "SocketMessageLogger",
    "CommandDispatcher",
    "CommandRegistry",
    "parse_command",
    "apply_patch",
    "ChatMessage",
    "CommandContext",
    "CommandParams",
    "CommandResult",
    "ConnectionState",
    "ConnectionStatus",
    "MessageCursor",
    "ParsedCommand",
    "SocketEvent",
    "SocketLogLevel",
    "BridgeError",
    "ConfigError",
    "ConnectError",
    "RoomJoinError",
    "RoomJoinTimeoutError",
    "ChatServiceError",
    "ProtocolError",
    "PatchError",
    "InvalidPatchError",
    "PatchPointerError",
    "PatchTestFailedError",
]
