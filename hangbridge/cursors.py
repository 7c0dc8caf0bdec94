# =============================================================================
# Hangbridge -- Cursor Store
# =============================================================================
#
# "Last seen" bookkeeping per message channel: one public cursor shared by
# the group chat, one private cursor per counterpart user.  Cursors only
# move forward.
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable

from ._logging import logger
from .constants import KEY_LAST_MESSAGE_ID, KEY_PRIVATE_TRACKING
from .status_store import StatusStore
from .types import MessageCursor


def _numeric_id(value: Any) -> int | None:
    if value is None:
        return None
    text = str(value)
    return int(text) if text.isdigit() else None


def _seconds_now() -> int:
    # chat timestamps are whole epoch seconds
    return int(time.time())


class CursorStore:
    """Tracks how far the public and private message channels were read.

    Args:
        status_store: Where cursor state is mirrored (best-effort).
        bot_id: The bot's own user ID; never tracked as a counterpart.
        clock: Returns "now" in epoch seconds, the chat service timestamp unit.
    """

    def __init__(
        self,
        status_store: StatusStore | None = None,
        *,
        bot_id: str | None = None,
        clock: Callable[[], int] = _seconds_now,
    ) -> None:
        self._status = status_store
        self._bot_id = bot_id
        self._clock = clock
        self._public = MessageCursor()
        self._private: dict[str, MessageCursor] = {}
        self._stale_skipped = 0

    # -- Reads ----------------------------------------------------------------

    @property
    def public(self) -> MessageCursor:
        return self._public

    def private(self, user_id: str) -> MessageCursor | None:
        return self._private.get(user_id)

    @property
    def private_user_ids(self) -> list[str]:
        return list(self._private)

    def is_tracked(self, user_id: str) -> bool:
        return user_id in self._private

    def is_behind(
        self,
        message_id: str,
        sent_at: int | None,
        *,
        private_user: str | None = None,
    ) -> bool:
        """True if a message is at or behind the cursor of its channel.

        Numeric IDs are compared numerically.  Otherwise a repeated ID, or a
        send time older than the last consumed one, counts as behind.
        """
        if private_user is None:
            cursor = self._public
            # public timestamps are stored as sent_at + 1
            last_sent = (
                cursor.last_timestamp - 1 if cursor.last_timestamp is not None else None
            )
        else:
            cursor = self._private.get(private_user)
            if cursor is None:
                return False
            last_sent = cursor.last_timestamp

        last_num = _numeric_id(cursor.last_message_id)
        msg_num = _numeric_id(message_id)
        if last_num is not None and msg_num is not None:
            behind = msg_num <= last_num
        elif cursor.last_message_id is not None and str(message_id) == cursor.last_message_id:
            behind = True
        elif last_sent is not None and sent_at is not None:
            behind = sent_at < last_sent
        else:
            behind = False

        if behind:
            self._stale_skipped += 1
        return behind

    # -- Advancing --------------------------------------------------------------

    def advance_public(self, message_id: str, sent_at: int) -> bool:
        """Move the public cursor to ``message_id`` / ``sent_at + 1``."""
        if self.is_behind(message_id, sent_at):
            return False
        previous = self._public.last_message_id
        self._public = MessageCursor(str(message_id), sent_at + 1)
        logger.debug(
            "Public cursor %s -> %s (timestamp %s)",
            previous,
            message_id,
            sent_at + 1,
        )
        self._persist(KEY_LAST_MESSAGE_ID, self._public.last_message_id)
        return True

    def advance_private(self, user_id: str, message_id: str, sent_at: int) -> bool:
        """Move ``user_id``'s private cursor to ``message_id`` / ``sent_at``."""
        if not user_id:
            return False
        if self.is_behind(message_id, sent_at, private_user=user_id):
            return False
        self._private[user_id] = MessageCursor(str(message_id), sent_at)
        logger.debug("Private cursor for %s -> %s", user_id, message_id)
        self._persist_private(user_id)
        return True

    # -- Seeding / membership ----------------------------------------------------

    def seed_public(self, message_id: str | None, timestamp: int | None = None) -> None:
        """Initialise the public cursor; ``timestamp`` defaults to now."""
        if timestamp is None:
            timestamp = self._clock()
        self._public = MessageCursor(
            str(message_id) if message_id is not None else None, timestamp
        )
        if message_id is not None:
            self._persist(KEY_LAST_MESSAGE_ID, self._public.last_message_id)

    def track_user(
        self,
        user_id: str,
        *,
        from_now: bool = False,
        cursor: MessageCursor | None = None,
    ) -> bool:
        """Start tracking a counterpart.  Returns False if already tracked."""
        if not user_id or user_id == self._bot_id:
            return False
        if user_id in self._private:
            logger.debug(
                "Private message tracking already exists for user %s: %s",
                user_id,
                self._private[user_id].to_dict(),
            )
            return False
        if cursor is None:
            cursor = MessageCursor(None, self._clock() if from_now else None)
        self._private[user_id] = cursor
        self._persist_private(user_id)
        return True

    def forget_user(self, user_id: str) -> bool:
        """Stop tracking a counterpart.  The bot's own entry is never removed."""
        if user_id == self._bot_id or user_id not in self._private:
            logger.debug("No private message tracking found for user: %s", user_id)
            return False
        del self._private[user_id]
        self._persist_private(user_id)
        logger.debug("Removed private message tracking for user: %s", user_id)
        return True

    # -- Snapshot ---------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "public": self._public.to_dict(),
            "private": {uid: c.to_dict() for uid, c in self._private.items()},
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._public = MessageCursor.from_dict(data.get("public"))
        self._private = {
            uid: MessageCursor.from_dict(c)
            for uid, c in (data.get("private") or {}).items()
            if uid != self._bot_id
        }

    def load_from_status(self) -> None:
        """Pull previously mirrored cursors back from the status store."""
        if self._status is None:
            return
        last_id = self._status.get(KEY_LAST_MESSAGE_ID)
        if last_id is not None:
            self._public = MessageCursor(str(last_id), self._clock())
        tracking = self._status.get(KEY_PRIVATE_TRACKING) or {}
        for uid, data in tracking.items():
            if uid != self._bot_id and uid not in self._private:
                self._private[uid] = MessageCursor.from_dict(data)

    def flush(self) -> None:
        """Mirror every cursor to the status store."""
        if self._public.last_message_id is not None:
            self._persist(KEY_LAST_MESSAGE_ID, self._public.last_message_id)
        if self._private:
            self._persist(KEY_PRIVATE_TRACKING, self._private_dict())

    def get_stats(self) -> dict[str, Any]:
        return {
            "public": self._public.to_dict(),
            "private_tracked": len(self._private),
            "stale_skipped": self._stale_skipped,
        }

    # -- Internal ---------------------------------------------------------------

    def _private_dict(self) -> dict[str, dict[str, Any]]:
        return {uid: c.to_dict() for uid, c in self._private.items()}

    def _persist_private(self, user_id: str) -> None:
        self._persist(KEY_PRIVATE_TRACKING, self._private_dict(), user_id=user_id)

    def _persist(self, key: str, value: Any, *, user_id: str | None = None) -> None:
        if self._status is None:
            return
        try:
            self._status.set(key, value)
        except Exception as exc:
            if user_id is not None:
                logger.error(
                    "Failed to persist private message tracking state for user %s: %s",
                    user_id,
                    exc,
                )
            else:
                logger.error("Failed to persist %s: %s", key, exc)
