# =============================================================================
# Hangbridge -- Socket Frame Codec
# =============================================================================
#
# Incoming (server -> bot):
#   Text:   JSON object, either a notification with a "type" field
#           (statefulMessage / statelessMessage / serverMessage / error)
#           or a reply {"id", "result"} / {"id", "error"} to a request.
#   Binary: "M:" + msgpack of the same object, or plain UTF-8 JSON.
#
# Outgoing (bot -> server):
#   {"id", "action", "token", "params"}
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import msgpack
import orjson

from .constants import (
    FRAME_ERROR,
    FRAME_SERVER,
    FRAME_STATEFUL,
    FRAME_STATELESS,
)
from .errors import ProtocolError
from .types import EventKind, SocketEvent

PREFIX_MSGPACK = b"M:"


@dataclass(frozen=True, slots=True)
class Reply:
    """Server answer to a request frame."""

    id: str
    result: Any = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FrameCodec:
    """Encode requests and decode inbound room-socket frames."""

    def decode(self, data: str | bytes) -> SocketEvent | Reply:
        """Decode one frame.  Raises ProtocolError for anything unusable."""
        obj = self._load(data)
        if not isinstance(obj, dict):
            raise ProtocolError(f"Frame is not an object: {type(obj).__name__}")

        if "type" not in obj and "id" in obj and ("result" in obj or "error" in obj):
            return Reply(
                id=str(obj["id"]), result=obj.get("result"), error=obj.get("error")
            )

        frame_type = obj.get("type")
        message = obj.get("message")

        if frame_type == FRAME_STATEFUL:
            message = message if isinstance(message, dict) else {}
            patch = message.get("statePatch")
            if patch is not None and not isinstance(patch, list):
                raise ProtocolError("statePatch must be a list")
            return SocketEvent(
                kind=EventKind.STATEFUL,
                name=str(message.get("name") or ""),
                payload=message,
                state_patch=patch,
            )

        if frame_type == FRAME_STATELESS:
            message = message if isinstance(message, dict) else {}
            return SocketEvent(
                kind=EventKind.STATELESS,
                name=str(message.get("name") or ""),
                payload=message,
            )

        if frame_type == FRAME_SERVER:
            message = message if isinstance(message, dict) else {}
            return SocketEvent(
                kind=EventKind.SERVER,
                name=str(message.get("name") or ""),
                payload={"message": message},
            )

        if frame_type == FRAME_ERROR:
            return SocketEvent(kind=EventKind.ERROR, payload=obj.get("error"))

        raise ProtocolError(f"Unknown frame type: {frame_type!r}")

    def encode_request(
        self,
        request_id: str,
        action: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> str:
        frame: dict[str, Any] = {"id": request_id, "action": action}
        if token is not None:
            frame["token"] = token
        frame["params"] = params or {}
        return orjson.dumps(frame).decode()

    @staticmethod
    def _load(data: str | bytes) -> Any:
        try:
            if isinstance(data, bytes) and data.startswith(PREFIX_MSGPACK):
                return msgpack.unpackb(data[len(PREFIX_MSGPACK):], raw=False)
            return orjson.loads(data)
        except (orjson.JSONDecodeError, msgpack.UnpackException, ValueError) as exc:
            raise ProtocolError(f"Undecodable frame: {exc}") from exc
