# =============================================================================
# Hangbridge -- Message Poller
# =============================================================================
#
# Timer-driven pull of new chat messages.  Each tick processes the public
# group channel, then the private channels of every known counterpart,
# advancing cursors before dispatching so nothing is handled twice.
#
# Ticks never overlap: a timer firing while a tick is running is skipped.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable

from ._logging import logger
from .chat import ChatService
from .commands import CommandDispatcher
from .constants import POLL_INTERVAL
from .cursors import CursorStore
from .types import ChatMessage


class MessagePoller:
    """Polls the chat service and feeds new foreign messages to the dispatcher.

    Args:
        chat: Chat service to fetch from.
        cursors: Read positions; advanced per processed message.
        dispatcher: Receives the text of every new foreign message.
        room_state: Returns the current room state (may be ``None``).
        bot_id: The bot's own user ID; its messages are never dispatched.
        room_id: Group chat to poll.
        interval: Seconds between ticks.
    """

    def __init__(
        self,
        chat: ChatService,
        cursors: CursorStore,
        dispatcher: CommandDispatcher,
        room_state: Callable[[], Any],
        *,
        bot_id: str,
        room_id: str,
        interval: float = POLL_INTERVAL,
    ) -> None:
        self._chat = chat
        self._cursors = cursors
        self._dispatcher = dispatcher
        self._room_state = room_state
        self._bot_id = bot_id
        self._room_id = room_id
        self._interval = interval

        self._timer: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[bool] | None = None
        self._in_flight = False

        self._ticks = 0
        self._skipped_ticks = 0
        self._dispatched = 0
        self._fetch_errors = 0
        self._batch_aborts = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def interval(self) -> float:
        return self._interval

    # -- Lifecycle ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run())
        logger.info("Message polling started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        timer, self._timer = self._timer, None
        tick, self._tick_task = self._tick_task, None
        for task in (timer, tick):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        logger.info("Message polling stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._tick_task is not None and not self._tick_task.done():
                self._skipped_ticks += 1
                logger.debug("Previous poll tick still running, skipping this one")
                continue
            self._tick_task = asyncio.create_task(self.tick())

    # -- Tracking setup ---------------------------------------------------------------

    async def initialize_tracking(self) -> None:
        """Seed cursors before the first tick.

        The public cursor comes from the status store or, failing that, the
        newest group message; counterparts already in the room are tracked
        from now on.
        """
        self._cursors.load_from_status()
        if self._cursors.public.last_message_id is None:
            try:
                latest = await self._chat.latest_group_message_id()
            except Exception as exc:
                logger.warning("Could not fetch latest message ID: %s", exc)
                latest = None
            self._cursors.seed_public(latest)
            logger.info("Public message cursor seeded at %s", latest)

        for uid in self.known_counterparts():
            self._cursors.track_user(uid, from_now=True)

    def known_counterparts(self) -> list[str]:
        """Users in the room (minus the bot) plus anyone already tracked."""
        seen: list[str] = []
        state = self._room_state()
        users = state.get("allUsers") if isinstance(state, dict) else None
        for user in users or ():
            uid = user.get("uuid") if isinstance(user, dict) else None
            if uid and str(uid) != self._bot_id and str(uid) not in seen:
                seen.append(str(uid))
        for uid in self._cursors.private_user_ids:
            if uid != self._bot_id and uid not in seen:
                seen.append(uid)
        return seen

    # -- Tick -------------------------------------------------------------------------

    async def tick(self) -> bool:
        """Run one poll cycle.  Returns False if another tick was in flight."""
        if self._in_flight:
            self._skipped_ticks += 1
            logger.debug("Poll tick already in flight, skipping")
            return False
        self._in_flight = True
        try:
            self._ticks += 1
            await self.process_public()
            await self.process_private()
        finally:
            self._in_flight = False
        return True

    async def process_public(self) -> int:
        cursor = self._cursors.public
        try:
            messages = await self._chat.fetch_group_messages(
                self._room_id,
                from_timestamp=cursor.last_timestamp,
                last_id=cursor.last_message_id,
                filter_commands=False,
            )
        except Exception as exc:
            self._fetch_errors += 1
            logger.error("Error fetching public messages: %s", exc, exc_info=True)
            return 0
        if not messages:
            return 0
        return await self._process_batch(messages, private=False)

    async def process_private(self) -> int:
        merged: list[ChatMessage] = []
        for uid in self.known_counterparts():
            cursor = self._cursors.private(uid)
            if cursor is None:
                # seen in the room without a userJoined event: start from now
                self._cursors.track_user(uid, from_now=True)
                logger.debug("Private message tracking initialised for user: %s", uid)
                continue
            try:
                messages = await self._chat.fetch_private_messages(
                    uid,
                    last_message_id=cursor.last_message_id,
                    last_timestamp=cursor.last_timestamp,
                    log_last_message=False,
                    return_data=True,
                )
            except Exception as exc:
                self._fetch_errors += 1
                logger.error(
                    "Error fetching private messages for user %s: %s",
                    uid,
                    exc,
                    exc_info=True,
                )
                continue
            merged.extend(messages or ())

        if not merged:
            return 0
        merged.sort(key=lambda m: m.sent_at)
        return await self._process_batch(merged, private=True)

    async def _process_batch(self, messages: list[ChatMessage], *, private: bool) -> int:
        channel = "private" if private else "public"
        dispatched = 0
        for message in messages:
            try:
                if await self._process_message(message, private=private):
                    dispatched += 1
            except Exception as exc:
                self._batch_aborts += 1
                logger.error(
                    "Error processing %s message %s, skipping rest of batch: %s",
                    channel,
                    message.id,
                    exc,
                    exc_info=True,
                )
                break
        return dispatched

    async def _process_message(self, message: ChatMessage, *, private: bool) -> bool:
        sender = message.sender_id
        if private:
            advanced = self._cursors.advance_private(sender, message.id, message.sent_at)
        else:
            advanced = self._cursors.advance_public(message.id, message.sent_at)
        if not advanced:
            logger.debug("Skipping already processed message %s", message.id)
            return False

        text = message.text
        if not text:
            return False
        if sender == self._bot_id:
            return False

        await self._dispatcher.dispatch(text, message)
        self._dispatched += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "ticks": self._ticks,
            "skipped_ticks": self._skipped_ticks,
            "dispatched": self._dispatched,
            "fetch_errors": self._fetch_errors,
            "batch_aborts": self._batch_aborts,
        }
