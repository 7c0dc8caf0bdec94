# =============================================================================
# Hangbridge -- Bridge Assembly
# =============================================================================
#
# Wires the components together.  Every component gets its collaborators
# through its constructor; Services is the bag handed to command handlers.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from ._logging import logger
from .chat import CometChatClient
from .commands import CommandDispatcher, CommandRegistry, make_parser
from .config import BridgeConfig
from .connection import RoomConnection, SocketFactory
from .constants import (
    RECONNECT_BASE_DELAY,
    RECONNECT_FACTOR,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
)
from .cursors import CursorStore
from .handlers import register_default_commands
from .poller import MessagePoller
from .room_events import MembershipTracker
from .socket_client import RoomSocketClient
from .socket_log import SocketMessageLogger
from .status_store import StatusStore
from .types import ReconnectConfig, SocketEvent


@dataclass
class Services:
    """Collaborators visible to command handlers."""

    config: BridgeConfig
    chat: Any
    status: StatusStore
    cursors: CursorStore
    connection: RoomConnection
    registry: CommandRegistry
    socket_log: SocketMessageLogger
    started_at: float = field(default_factory=time.monotonic)


class Bridge:
    """A fully wired bot: connection, poller and dispatcher."""

    def __init__(
        self,
        services: Services,
        dispatcher: CommandDispatcher,
        poller: MessagePoller,
    ) -> None:
        self.services = services
        self.dispatcher = dispatcher
        self.poller = poller

    @property
    def connection(self) -> RoomConnection:
        return self.services.connection

    async def start(self) -> None:
        """Connect, seed cursors and start polling.  Connect errors propagate."""
        await self.connection.connect()
        await self.poller.initialize_tracking()
        self.poller.start()
        logger.info("Bridge running as %s", self.services.config.bot_uid)

    async def stop(self) -> None:
        await self.poller.stop()
        self.connection.disconnect()
        aclose = getattr(self.services.chat, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Bridge stopped")

    async def run(self, stop_event: asyncio.Event) -> None:
        """Start, wait for ``stop_event``, then stop."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "connection": self.connection.get_stats(),
            "poller": self.poller.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "cursors": self.services.cursors.get_stats(),
            "socket_log": self.services.socket_log.get_stats(),
        }


def _default_socket_factory(config: BridgeConfig) -> SocketFactory:
    reconnect = ReconnectConfig(
        base_delay=RECONNECT_BASE_DELAY,
        max_delay=RECONNECT_MAX_DELAY,
        max_attempts=RECONNECT_MAX_ATTEMPTS,
        factor=RECONNECT_FACTOR,
    )

    def factory(inbound: asyncio.Queue[SocketEvent]) -> RoomSocketClient:
        return RoomSocketClient(config.socket_url, inbound, reconnect=reconnect)

    return factory


def build_bridge(
    config: BridgeConfig,
    *,
    chat: Any = None,
    socket_factory: SocketFactory | None = None,
    status: StatusStore | None = None,
) -> Bridge:
    """Assemble a :class:`Bridge` from ``config``.

    ``chat`` and ``socket_factory`` replace the CometChat client and the
    room socket, mainly for tests.
    """
    status = status or StatusStore()
    chat = chat or CometChatClient(
        config.cometchat_api_key,
        config.cometchat_auth_token,
        config.bot_uid,
        group_id=config.hangout_id,
        command_switch=config.command_switch,
    )
    cursors = CursorStore(status, bot_id=config.bot_uid)
    socket_log = SocketMessageLogger(config.socket_message_log_level, config.log_dir)

    connection = RoomConnection(
        chat,
        socket_factory or _default_socket_factory(config),
        token=config.bot_user_token,
        room_uuid=config.hangout_id,
        group_id=config.hangout_id,
        socket_log=socket_log,
        cursors=cursors,
    )
    MembershipTracker(cursors).install(connection)

    registry = CommandRegistry()
    register_default_commands(registry)

    services = Services(
        config=config,
        chat=chat,
        status=status,
        cursors=cursors,
        connection=connection,
        registry=registry,
        socket_log=socket_log,
    )
    dispatcher = CommandDispatcher(
        registry, services, parser=make_parser(config.command_switch)
    )
    poller = MessagePoller(
        chat,
        cursors,
        dispatcher,
        lambda: connection.room_state,
        bot_id=config.bot_uid,
        room_id=config.hangout_id,
        interval=config.poll_interval,
    )
    return Bridge(services, dispatcher, poller)
