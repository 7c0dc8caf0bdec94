# =============================================================================
# Hangbridge -- Patch Synchronizer
# =============================================================================
#
# Applies the JSON-Patch batch carried by a stateful socket event to the
# room state held by a RoomStateHolder.  Never raises: a failed batch keeps
# the previous snapshot.
# =============================================================================

from __future__ import annotations

from typing import Any, Protocol

from ._logging import logger
from .errors import PatchError
from .patch import apply_patch
from .types import SocketEvent


class RoomStateHolder(Protocol):
    """Owner of the current room snapshot."""

    @property
    def room_state(self) -> Any: ...

    def replace_room_state(self, state: Any) -> None: ...


def _short_error(exc: Exception) -> str:
    # Drop any dumped document tail some errors carry.
    return str(exc).split("\ntree:")[0]


class PatchSynchronizer:
    """Keeps a room snapshot current from stateful event patches."""

    def __init__(self, holder: RoomStateHolder) -> None:
        self._holder = holder
        self._applied = 0
        self._failed = 0
        self._skipped_no_state = 0

    def handle(self, event: SocketEvent) -> bool:
        """Apply ``event.state_patch`` if there is one.

        Returns True only when a new snapshot was installed.
        """
        name = event.name or "<unnamed>"
        patch = event.state_patch
        if patch is None:
            logger.debug("No state patch provided for message: %s", name)
            return False

        current = self._holder.room_state
        if current is None:
            self._skipped_no_state += 1
            logger.warning(
                "Received state patch but no current state available for message: %s",
                name,
            )
            return False

        try:
            new_state = apply_patch(current, patch)
        except (PatchError, TypeError, ValueError) as exc:
            self._failed += 1
            logger.error(
                "Failed to apply state patch for %s: %s", name, _short_error(exc)
            )
            return False

        self._holder.replace_room_state(new_state)
        self._applied += 1
        logger.info(
            "Applied %d patch operations for message: %s", len(patch), name
        )
        return True

    def get_stats(self) -> dict[str, int]:
        return {
            "applied": self._applied,
            "failed": self._failed,
            "skipped_no_state": self._skipped_no_state,
        }
