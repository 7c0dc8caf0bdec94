# =============================================================================
# Hangbridge -- Room Socket Client
# =============================================================================
#
# WebSocket transport to the room service: open, request/reply for
# joinRoom, receive loop feeding an inbound asyncio.Queue, and automatic
# re-open with backoff.  A successful re-open pushes a RECONNECT event so
# the connection layer can rejoin the room.
# =============================================================================

from __future__ import annotations

import asyncio
import random
from typing import Any
from uuid import uuid4

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from ._logging import logger
from .constants import ACTION_JOIN_ROOM, SOCKET_OPEN_TIMEOUT
from .errors import ConnectError, ProtocolError, RoomJoinError
from .protocol import FrameCodec, Reply
from .types import EventKind, ReconnectConfig, SocketEvent

# Dropped first when the inbound queue overflows; losing a state patch
# would leave the room mirror diverged.
DROPPABLE_KINDS = frozenset({EventKind.STATELESS, EventKind.SERVER, EventKind.ERROR})


class RoomSocketClient:
    """Low-level room socket transport.

    Args:
        url: Room socket URL, e.g. ``"wss://socket.prod.tt.fm"``.
        inbound: Queue receiving decoded notifications.
        reconnect: Backoff policy for dropped transports.
        extra_headers: Additional HTTP headers for the handshake.
    """

    def __init__(
        self,
        url: str,
        inbound: asyncio.Queue[SocketEvent],
        *,
        reconnect: ReconnectConfig | None = None,
        extra_headers: dict[str, str] | None = None,
        codec: FrameCodec | None = None,
    ) -> None:
        self._url = url
        self._inbound = inbound
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self._extra_headers = extra_headers or {}
        self._codec = codec or FrameCodec()

        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._pending: dict[str, asyncio.Future[Reply]] = {}
        self._recv_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._closing = False
        self._dropped_events = 0
        self._resyncs = 0

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    # -- Open / Close ------------------------------------------------------------

    async def open(self) -> None:
        """Open the WebSocket and start the receive loop."""
        self._closing = False
        try:
            self._ws = await asyncio.wait_for(
                websockets.asyncio.client.connect(
                    self._url,
                    additional_headers=self._extra_headers,
                    max_size=2**22,
                    open_timeout=None,  # asyncio.wait_for handles timeout
                ),
                timeout=SOCKET_OPEN_TIMEOUT,
            )
        except asyncio.TimeoutError as exc:
            raise ConnectError(
                f"Socket open timed out after {SOCKET_OPEN_TIMEOUT:g}s"
            ) from exc
        except Exception as exc:
            raise ConnectError(f"Failed to open room socket: {exc}") from exc

        self._reconnect_attempts = 0
        self._recv_task = asyncio.create_task(self._recv_loop())
        logger.debug("Room socket open: %s", self._url)

    async def close(self) -> None:
        """Stop reconnecting, fail pending requests and close the socket."""
        self._closing = True
        if self._reconnect_task:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        if self._recv_task:
            self._recv_task.cancel()
            self._recv_task = None
        self._fail_pending(ConnectError("Room socket closed"))
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.debug("Socket close failed: %s", exc)

    # -- Requests ----------------------------------------------------------------

    async def join_room(self, token: str, room_uuid: str) -> dict[str, Any]:
        """Send joinRoom and wait for the reply; returns the result mapping.

        No timeout of its own: callers bound it.
        """
        reply = await self._request(
            ACTION_JOIN_ROOM, token=token, params={"roomUuid": room_uuid}
        )
        if not reply.ok:
            raise RoomJoinError(f"Room join rejected: {reply.error}")
        if not isinstance(reply.result, dict):
            raise RoomJoinError("Room join reply carried no result object")
        return reply.result

    async def _request(
        self,
        action: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Reply:
        if self._ws is None:
            raise ConnectError("Room socket is not open")
        request_id = uuid4().hex
        future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(
                self._codec.encode_request(request_id, action, token=token, params=params)
            )
            return await future
        except ConnectionClosed as exc:
            raise ConnectError(f"Room socket closed during {action}") from exc
        finally:
            self._pending.pop(request_id, None)

    # -- Receive loop -----------------------------------------------------------

    async def _recv_loop(self) -> None:
        ws = self._ws
        assert ws is not None
        try:
            async for data in ws:
                self._handle_frame(data)
        except asyncio.CancelledError:
            return
        except ConnectionClosedOK:
            logger.debug("Room socket closed normally")
        except ConnectionClosed as exc:
            logger.warning("Room socket dropped: %s", exc)
        except Exception as exc:
            logger.warning("Receive loop error: %s", exc)
            self._put(SocketEvent(kind=EventKind.ERROR, payload=str(exc)))

        self._ws = None
        self._fail_pending(ConnectError("Room socket connection lost"))
        if not self._closing:
            self._schedule_reconnect()

    def _handle_frame(self, data: str | bytes) -> None:
        try:
            decoded = self._codec.decode(data)
        except ProtocolError as exc:
            logger.warning("Dropping socket frame: %s", exc)
            return

        if isinstance(decoded, Reply):
            future = self._pending.get(decoded.id)
            if future is not None and not future.done():
                future.set_result(decoded)
            else:
                logger.debug("Reply for unknown request %s", decoded.id)
            return

        self._put(decoded)

    def _put(self, event: SocketEvent) -> None:
        try:
            self._inbound.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass

        pending: list[SocketEvent] = []
        while not self._inbound.empty():
            pending.append(self._inbound.get_nowait())
            self._inbound.task_done()
        pending.append(event)

        for index, queued in enumerate(pending):
            if queued.kind in DROPPABLE_KINDS:
                del pending[index]
                self._dropped_events += 1
                logger.warning(
                    "Inbound queue full, dropped oldest %s event", queued.kind.value
                )
                break
        else:
            # only state patches (and rejoins) left: discard them all and
            # rejoin, which replaces the room state wholesale
            self._dropped_events += len(pending)
            self._resyncs += 1
            pending = [SocketEvent(kind=EventKind.RECONNECT, name="resync")]
            logger.warning(
                "Inbound queue full of state patches, forcing a room rejoin"
            )

        for queued in pending:
            self._inbound.put_nowait(queued)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    # -- Reconnection ------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        cfg = self._reconnect_cfg
        if cfg.max_attempts >= 0 and self._reconnect_attempts >= cfg.max_attempts:
            logger.error("Max socket reconnect attempts (%d) reached", cfg.max_attempts)
            return
        delay = self._calculate_delay()
        logger.info(
            "Reopening room socket in %.1fs (attempt %d)",
            delay,
            self._reconnect_attempts + 1,
        )
        self._reconnect_task = asyncio.ensure_future(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        if self._closing:
            return

        self._reconnect_attempts += 1
        try:
            await self.open()
        except ConnectError as exc:
            logger.debug("Socket reopen failed: %s", exc)
            self._schedule_reconnect()
            return

        self._put(SocketEvent(kind=EventKind.RECONNECT, name="reconnect"))

    def _calculate_delay(self) -> float:
        cfg = self._reconnect_cfg
        delay = min(cfg.base_delay * (cfg.factor**self._reconnect_attempts), cfg.max_delay)
        if cfg.jitter:
            delay = max(0.0, delay + delay * 0.2 * (random.random() - 0.5))
        return delay

    def get_stats(self) -> dict[str, Any]:
        return {
            "open": self.is_open,
            "pending_requests": len(self._pending),
            "reconnect_attempts": self._reconnect_attempts,
            "dropped_events": self._dropped_events,
            "resyncs": self._resyncs,
        }
