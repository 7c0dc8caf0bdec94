# =============================================================================
# Hangbridge -- Room Connection
# =============================================================================
#
# Connection state machine for the group chat + room socket pair.
#
#   DISCONNECTED -> JOINING_CHAT -> SOCKET_CREATED -> JOINING_ROOM -> CONNECTED
#   CONNECTED --reconnect--> REJOINING --ok--> CONNECTED
#                                      --fail--> DEGRADED
#
# One consumer task drains the inbound queue and is the only writer of the
# room state once connect() has returned.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Protocol

from ._logging import logger
from .constants import (
    INBOUND_QUEUE_SIZE,
    ROOM_JOIN_TIMEOUT,
    SERVER_LOG,
    SOCKET_ERROR_LOG,
    STATEFUL_LOG,
    STATELESS_LOG,
)
from .cursors import CursorStore
from .errors import ChatServiceError, ConnectError, RoomJoinError, RoomJoinTimeoutError
from .socket_log import SocketMessageLogger
from .synchronizer import PatchSynchronizer
from .types import ConnectionState, ConnectionStatus, EventKind, MessageCursor, SocketEvent

StatefulHandler = Callable[[SocketEvent, Any], Any]
DISCONNECTED_DURING_CONNECT = "Disconnected during connect"


class RoomSocket(Protocol):
    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def join_room(self, token: str, room_uuid: str) -> dict[str, Any]: ...


class GroupJoiner(Protocol):
    async def join_group(self, group_id: str) -> None: ...


SocketFactory = Callable[["asyncio.Queue[SocketEvent]"], RoomSocket]


class RoomConnection:
    """Owns the room socket, the room state and the inbound consumer.

    Args:
        chat: Chat service used to join the group before the socket.
        socket_factory: Builds a socket bound to the inbound queue.
        token: Pre-issued user token for the room service.
        room_uuid: Room to join.
        group_id: Group chat ID joined first.
        socket_log: Diagnostic writer for inbound payloads.
        cursors: Cursor store flushed on disconnect and read for status.
        join_timeout: Seconds allowed for each room join.
    """

    def __init__(
        self,
        chat: GroupJoiner,
        socket_factory: SocketFactory,
        *,
        token: str,
        room_uuid: str,
        group_id: str | None = None,
        socket_log: SocketMessageLogger | None = None,
        cursors: CursorStore | None = None,
        join_timeout: float = ROOM_JOIN_TIMEOUT,
        inbound: asyncio.Queue[SocketEvent] | None = None,
    ) -> None:
        self._chat = chat
        self._socket_factory = socket_factory
        self._token = token
        self._room_uuid = room_uuid
        self._group_id = group_id or room_uuid
        self._socket_log = socket_log or SocketMessageLogger()
        self._cursors = cursors
        self._join_timeout = join_timeout
        self._inbound: asyncio.Queue[SocketEvent] = inbound or asyncio.Queue(
            maxsize=INBOUND_QUEUE_SIZE
        )

        self._state = ConnectionState.DISCONNECTED
        self._socket: RoomSocket | None = None
        self._room_state: Any = None
        self._consumer: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._synchronizer = PatchSynchronizer(self)
        self._stateful_handlers: dict[str, list[StatefulHandler]] = defaultdict(list)

        self._events_processed = 0
        self._handler_errors = 0
        self._rejoins = 0
        self._rejoin_failures = 0
        # bumped by disconnect(); a connect() that sees it change aborts
        self._generation = 0

        # Dispatch table keyed by event kind
        self._dispatch: dict[EventKind, Callable[[SocketEvent], Awaitable[None]]] = {
            EventKind.STATEFUL: self._handle_stateful,
            EventKind.STATELESS: self._handle_stateless,
            EventKind.SERVER: self._handle_server,
            EventKind.ERROR: self._handle_error,
            EventKind.RECONNECT: self._handle_reconnect,
        }

    # -- Properties ---------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def inbound(self) -> asyncio.Queue[SocketEvent]:
        return self._inbound

    @property
    def room_state(self) -> Any:
        return self._room_state

    def replace_room_state(self, state: Any) -> None:
        self._room_state = state

    @property
    def is_connected(self) -> bool:
        return self._socket is not None and self._state in (
            ConnectionState.CONNECTED,
            ConnectionState.REJOINING,
            ConnectionState.DEGRADED,
        )

    @property
    def synchronizer(self) -> PatchSynchronizer:
        return self._synchronizer

    # -- Handlers -------------------------------------------------------------------

    def on_stateful(self, name: str, handler: StatefulHandler) -> None:
        """Call ``handler(event, room_state)`` for stateful events named ``name``.

        Handlers run after the event's patch was applied.  Coroutine handlers
        are awaited in order.
        """
        self._stateful_handlers[name].append(handler)

    # -- Connect / Disconnect -------------------------------------------------------

    async def connect(self) -> None:
        """Join the group chat, open the socket, join the room, start consuming.

        Raises:
            ConnectError: Chat join or socket open failed.
            RoomJoinError: The room rejected the join.
            RoomJoinTimeoutError: The join took longer than ``join_timeout``.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise ConnectError(f"Cannot connect while {self._state.value}")

        generation = self._generation
        try:
            self._set_state(ConnectionState.JOINING_CHAT)
            try:
                await self._chat.join_group(self._group_id)
            except ChatServiceError as exc:
                raise ConnectError(f"Failed to join group chat: {exc}") from exc
            self._ensure_current(generation)

            socket = self._socket_factory(self._inbound)
            self._socket = socket
            await socket.open()
            self._ensure_current(generation)
            self._set_state(ConnectionState.SOCKET_CREATED)

            self._set_state(ConnectionState.JOINING_ROOM)
            state = await self._join_room(socket)
            self._ensure_current(generation)

            self._room_state = state
            await self._socket_log.write_initial_state(state)
            self._ensure_current(generation)
        except Exception as exc:
            if generation != self._generation:
                # already torn down by disconnect()
                logger.info("Connect abandoned: disconnected while connecting")
                raise ConnectError(DISCONNECTED_DURING_CONNECT) from exc
            logger.error("Failed to connect: %s", exc)
            self._abort_connect()
            raise

        self._consumer = asyncio.create_task(self._consume())
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to room %s", self._room_uuid)

    def disconnect(self) -> None:
        """Tear down without waiting for in-flight work.  Safe to call twice."""
        self._generation += 1
        if self._cursors is not None:
            try:
                self._cursors.flush()
            except Exception as exc:
                logger.error("Failed to flush message cursors: %s", exc)

        consumer, self._consumer = self._consumer, None
        if consumer is not None and not consumer.done():
            consumer.cancel()

        # stale events must not be applied to the next session's state
        while not self._inbound.empty():
            self._inbound.get_nowait()
            self._inbound.task_done()

        socket, self._socket = self._socket, None
        if socket is not None:
            self._close_later(socket)

        self._room_state = None
        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from room %s", self._room_uuid)

    def get_connection_status(self) -> ConnectionStatus:
        cursor = self._cursors.public if self._cursors is not None else MessageCursor()
        return ConnectionStatus(
            is_connected=self._socket is not None,
            has_state=self._room_state is not None,
            last_message_id=cursor.last_message_id,
            last_timestamp=cursor.last_timestamp,
        )

    # -- Joining ------------------------------------------------------------------

    async def _join_room(self, socket: RoomSocket) -> Any:
        try:
            result = await asyncio.wait_for(
                socket.join_room(self._token, self._room_uuid),
                timeout=self._join_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise RoomJoinTimeoutError(self._join_timeout) from exc
        except RoomJoinError:
            raise
        except Exception as exc:
            raise RoomJoinError(f"Room join failed: {exc}") from exc

        if not isinstance(result, dict) or "state" not in result:
            raise RoomJoinError("Room join reply carried no state")
        return result["state"]

    def _abort_connect(self) -> None:
        socket, self._socket = self._socket, None
        if socket is not None:
            self._close_later(socket)
        self._room_state = None
        self._set_state(ConnectionState.DISCONNECTED)

    # -- Consumer -----------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            event = await self._inbound.get()
            try:
                await self._dispatch[event.kind](event)
                self._events_processed += 1
            except Exception as exc:
                self._handler_errors += 1
                logger.error(
                    "Error handling %s event %s: %s",
                    event.kind.value,
                    event.name or "<unnamed>",
                    exc,
                    exc_info=True,
                )
            finally:
                self._inbound.task_done()

    async def _handle_stateful(self, event: SocketEvent) -> None:
        await self._socket_log.write(STATEFUL_LOG, event.payload)
        self._synchronizer.handle(event)
        for handler in list(self._stateful_handlers.get(event.name, ())):
            try:
                result = handler(event, self._room_state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._handler_errors += 1
                logger.error("Handler error for '%s': %s", event.name, exc)

    async def _handle_stateless(self, event: SocketEvent) -> None:
        await self._socket_log.write(STATELESS_LOG, event.payload)

    async def _handle_server(self, event: SocketEvent) -> None:
        await self._socket_log.write(SERVER_LOG, event.payload)

    async def _handle_error(self, event: SocketEvent) -> None:
        logger.error("Room socket error: %s", event.payload)
        await self._socket_log.write(
            SOCKET_ERROR_LOG,
            {"error": event.payload, "timestamp": datetime.now(UTC).isoformat()},
        )

    async def _handle_reconnect(self, event: SocketEvent) -> None:
        if self._socket is None:
            return
        logger.info("Room socket reconnected, rejoining room %s", self._room_uuid)
        self._set_state(ConnectionState.REJOINING)
        try:
            state = await self._join_room(self._socket)
        except RoomJoinError as exc:
            self._rejoin_failures += 1
            logger.error("Failed to rejoin room after reconnect: %s", exc)
            self._set_state(ConnectionState.DEGRADED)
            return

        self._room_state = state
        self._rejoins += 1
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Rejoined room %s with fresh state", self._room_uuid)

    # -- Internal -----------------------------------------------------------------

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise ConnectError(DISCONNECTED_DURING_CONNECT)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Connection state %s -> %s", self._state.value, state.value)
        self._state = state

    def _close_later(self, socket: RoomSocket) -> None:
        coro = socket.close()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running loop, socket close skipped")
            return
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._close_done)

    def _close_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Socket close failed: %s", task.exception())

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "has_state": self._room_state is not None,
            "queued_events": self._inbound.qsize(),
            "events_processed": self._events_processed,
            "handler_errors": self._handler_errors,
            "rejoins": self._rejoins,
            "rejoin_failures": self._rejoin_failures,
            "synchronizer": self._synchronizer.get_stats(),
        }
