# =============================================================================
# Hangbridge -- Room Event Handlers
# =============================================================================
#
# Keeps private-message cursors in step with room membership:
#   userJoined  -> start tracking the newcomer from "now"
#   userLeft    -> stop tracking them
# The user ID is taken from the /allUserData/<uuid> op in the event's patch.
# =============================================================================

from __future__ import annotations

from typing import Any

from ._logging import logger
from .cursors import CursorStore
from .types import SocketEvent

USER_DATA_PREFIX = "/allUserData/"
EVENT_USER_JOINED = "userJoined"
EVENT_USER_LEFT = "userLeft"


def user_id_from_patch(patch: list[dict[str, Any]] | None, op: str) -> str | None:
    """UUID of the first ``op`` operation on ``/allUserData/<uuid>``."""
    for operation in patch or ():
        path = operation.get("path")
        if operation.get("op") == op and isinstance(path, str) and path.startswith(USER_DATA_PREFIX):
            uid = path[len(USER_DATA_PREFIX):].split("/", 1)[0]
            if uid:
                return uid
    return None


class MembershipTracker:
    """Stateful-event handlers for room arrivals and departures."""

    def __init__(self, cursors: CursorStore) -> None:
        self._cursors = cursors

    def install(self, connection: Any) -> None:
        connection.on_stateful(EVENT_USER_JOINED, self.on_user_joined)
        connection.on_stateful(EVENT_USER_LEFT, self.on_user_left)

    def on_user_joined(self, event: SocketEvent, room_state: Any) -> None:
        uid = user_id_from_patch(event.state_patch, "add")
        if uid is None:
            logger.warning("No user UUID found in %s patch", event.name)
            return
        if self._cursors.track_user(uid, from_now=True):
            logger.debug("Private message tracking initialised for new user: %s", uid)

    def on_user_left(self, event: SocketEvent, room_state: Any) -> None:
        if room_state is None:
            logger.debug("State not available, skipping %s", event.name)
            return
        uid = user_id_from_patch(event.state_patch, "remove")
        if uid is None:
            logger.debug("No user data remove patch found in %s message", event.name)
            return
        logger.debug("User %s left the room", uid)
        self._cursors.forget_user(uid)
