# =============================================================================
# Hangbridge -- Chat Service Client
# =============================================================================
#
# CometChat REST client on httpx.AsyncClient.  Fetches return ChatMessage
# records; HTTP or transport failures raise ChatServiceError.  Sends log and
# return False instead of raising.
# =============================================================================

from __future__ import annotations

import time
from typing import Any, Callable, Protocol
from uuid import uuid4

import httpx
import orjson

from ._logging import logger
from .constants import (
    CHAT_HTTP_TIMEOUT,
    CHAT_PAGE_SIZE,
    DEFAULT_COMMAND_SWITCH,
    LATEST_MESSAGE_LOOKBACK_MINUTES,
    PRIVATE_PAGE_SIZE,
    RESPONSE_CHANNEL_PUBLIC,
    RESPONSE_CHANNEL_REQUEST,
)
from .errors import ChatServiceError
from .types import ChatMessage

RECEIVER_GROUP = "group"
RECEIVER_USER = "user"

_LIST_FLAGS: list[tuple[str, Any]] = [
    ("hideMessagesFromBlockedUsers", 0),
    ("unread", 0),
    ("withTags", 0),
    ("hideDeleted", 0),
]


class ChatService(Protocol):
    """What the poller, the connection and the commands need from chat."""

    async def join_group(self, group_id: str) -> None: ...

    async def fetch_group_messages(
        self,
        room_id: str | None = None,
        *,
        from_timestamp: int | None = None,
        last_id: str | None = None,
        filter_commands: bool = False,
    ) -> list[ChatMessage]: ...

    async def fetch_private_messages(
        self,
        user_id: str,
        *,
        last_message_id: str | None = None,
        last_timestamp: int | None = None,
        log_last_message: bool = False,
        return_data: bool = True,
    ) -> list[ChatMessage]: ...

    async def latest_group_message_id(self) -> str | None: ...

    async def send_response(
        self,
        message: str,
        *,
        response_channel: str = RESPONSE_CHANNEL_REQUEST,
        is_private_message: bool = False,
        sender: str | None = None,
    ) -> bool: ...


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_sender(record: dict[str, Any]) -> str:
    """Find the sender UID in a CometChat message record."""
    sender = record.get("sender")
    if isinstance(sender, dict) and sender.get("uid"):
        return str(sender["uid"])
    if isinstance(sender, str) and sender:
        return sender
    for path in (
        ("data", "entities", "sender", "entity", "uid"),
        ("data", "metadata", "chatMessage", "userUuid"),
        ("data", "metadata", "message", "customData", "userUuid"),
    ):
        value = _dig(record, *path)
        if value:
            return str(value)
    return ""


def extract_text(record: dict[str, Any]) -> str:
    text = _dig(record, "data", "text")
    if not text:
        text = _dig(record, "data", "metadata", "chatMessage", "message")
    return str(text).strip() if text else ""


def to_chat_message(
    record: dict[str, Any],
    *,
    is_private: bool = False,
    recipient_id: str | None = None,
) -> ChatMessage:
    """Convert one raw CometChat record into a :class:`ChatMessage`."""
    if "id" not in record:
        raise ChatServiceError("Message record without id")
    return ChatMessage(
        id=str(record["id"]),
        sent_at=int(record.get("sentAt") or 0),
        sender=extract_sender(record),
        text=extract_text(record),
        is_private_message=is_private,
        recipient_id=recipient_id,
        raw=record,
    )


class CometChatClient:
    """Async CometChat REST client acting on behalf of the bot user.

    Args:
        api_key: CometChat app ID; also selects the API host.
        auth_token: REST auth token.
        bot_uid: The bot's user ID, sent as ``onBehalfOf``.
        group_id: Default group (the hangout) for group operations.
        base_url: Override the API host, mainly for tests.
        client: Pre-built ``httpx.AsyncClient``; closed by :meth:`aclose`.
        profile: Extra fields merged into the outgoing chat metadata
            (display name, avatar, colour).
    """

    def __init__(
        self,
        api_key: str,
        auth_token: str,
        bot_uid: str,
        *,
        group_id: str,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = CHAT_HTTP_TIMEOUT,
        command_switch: str = DEFAULT_COMMAND_SWITCH,
        profile: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bot_uid = bot_uid
        self._group_id = group_id
        self._command_switch = command_switch
        self._profile = dict(profile or {})
        self._clock = clock
        self._base_url = (
            base_url or f"https://{api_key}.apiclient-us.cometchat.io"
        ).rstrip("/")
        self._http = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Content-Type": "application/json",
            "appid": api_key,
            "authtoken": auth_token,
            "onBehalfOf": bot_uid,
        }
        self._requests = 0
        self._failures = 0

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- Transport ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, Any]] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}/{path.lstrip('/')}"
        self._requests += 1
        try:
            response = await self._http.request(
                method,
                url,
                headers=self._headers,
                params=params,
                content=orjson.dumps(payload) if payload is not None else None,
            )
        except httpx.HTTPError as exc:
            self._failures += 1
            raise ChatServiceError(f"CometChat {method} {path} failed: {exc}") from exc

        if not response.is_success:
            self._failures += 1
            raise ChatServiceError(
                f"CometChat HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            self._failures += 1
            raise ChatServiceError(f"CometChat returned invalid JSON: {exc}") from exc

    @staticmethod
    def _records(body: Any) -> list[dict[str, Any]]:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            return []
        return [r for r in data if isinstance(r, dict)]

    # -- Groups -------------------------------------------------------------------

    async def join_group(self, group_id: str | None = None) -> None:
        """Add the bot to the group; already being a member is fine."""
        group_id = group_id or self._group_id
        try:
            await self._request(
                "POST",
                f"v3/groups/{group_id}/members",
                payload={"participants": [self._bot_uid]},
            )
        except ChatServiceError as exc:
            if "ERR_ALREADY_JOINED" in str(exc):
                logger.debug("Already a member of chat group %s", group_id)
                return
            logger.error("Error joining chat group %s: %s", group_id, exc)
            raise
        logger.info("Joined chat group %s", group_id)

    async def fetch_group_messages(
        self,
        room_id: str | None = None,
        *,
        from_timestamp: int | None = None,
        last_id: str | None = None,
        filter_commands: bool = False,
        limit: int = CHAT_PAGE_SIZE,
    ) -> list[ChatMessage]:
        """Group messages after ``last_id`` / ``from_timestamp``, oldest first."""
        room_id = room_id or self._group_id
        params: list[tuple[str, Any]] = [
            ("per_page", limit),
            *_LIST_FLAGS,
            ("undelivered", 1),
            ("affix", "append"),
        ]
        if last_id:
            params.append(("withMessageId", last_id))
        if from_timestamp:
            params.append(("updatedAt", from_timestamp))

        body = await self._request("GET", f"v3.0/groups/{room_id}/messages", params=params)
        messages = [to_chat_message(r) for r in self._records(body)]
        if filter_commands:
            messages = [m for m in messages if m.text.startswith(self._command_switch)]
        messages.sort(key=lambda m: m.sent_at)
        logger.debug("Fetched %d group messages from %s", len(messages), room_id)
        return messages

    async def latest_group_message_id(self) -> str | None:
        """Newest group message ID, looking back minute by minute."""
        now = int(self._clock())
        for minutes in range(LATEST_MESSAGE_LOOKBACK_MINUTES + 1):
            params: list[tuple[str, Any]] = [
                ("per_page", 1),
                *_LIST_FLAGS,
                ("undelivered", 0),
                ("affix", "append"),
                ("updatedAt", now - minutes * 60),
            ]
            try:
                body = await self._request(
                    "GET", f"v3.0/groups/{self._group_id}/messages", params=params
                )
            except ChatServiceError as exc:
                logger.warning("Latest message lookup failed (%d min back): %s", minutes, exc)
                continue
            records = self._records(body)
            if records and "id" in records[-1]:
                return str(records[-1]["id"])
        logger.debug(
            "No group messages within the last %d minutes", LATEST_MESSAGE_LOOKBACK_MINUTES
        )
        return None

    # -- Private ------------------------------------------------------------------

    async def fetch_private_messages(
        self,
        user_id: str,
        *,
        last_message_id: str | None = None,
        last_timestamp: int | None = None,
        log_last_message: bool = False,
        return_data: bool = True,
    ) -> list[ChatMessage]:
        """Private messages ``user_id`` sent to the bot, oldest first."""
        params: list[tuple[str, Any]] = [
            ("limit", PRIVATE_PAGE_SIZE),
            ("receiverType", RECEIVER_USER),
            ("sender", user_id),
            *_LIST_FLAGS,
            ("undelivered", 0),
        ]
        if last_timestamp:
            params.append(("fromTimestamp", last_timestamp + 1))

        body = await self._request("GET", "v3.0/messages", params=params)
        messages = [
            to_chat_message(r, is_private=True, recipient_id=user_id)
            for r in self._records(body)
        ]
        messages.sort(key=lambda m: m.sent_at)

        if log_last_message:
            if messages:
                last = messages[-1]
                logger.info(
                    "Last private message from %s: %s (id %s)", user_id, last.text, last.id
                )
            else:
                logger.info("No new private messages from %s", user_id)

        if not return_data:
            return []
        return messages

    # -- Sending ------------------------------------------------------------------

    def _payload(self, receiver: str, receiver_type: str, text: str) -> dict[str, Any]:
        chat_message = {
            **self._profile,
            "message": text,
            "mentions": [],
            "userUuid": self._bot_uid,
            "id": str(uuid4()),
        }
        return {
            "receiver": receiver,
            "receiverType": receiver_type,
            "category": "message",
            "type": "text",
            "data": {"text": text, "metadata": {"chatMessage": chat_message}},
        }

    async def send_group_message(self, text: str, *, room_id: str | None = None) -> bool:
        if not text:
            logger.warning("Refusing to send an empty group message")
            return False
        room_id = room_id or self._group_id
        try:
            await self._request(
                "POST", "v3.0/messages", payload=self._payload(room_id, RECEIVER_GROUP, text)
            )
        except ChatServiceError as exc:
            logger.error("Failed to send group message: %s", exc)
            return False
        logger.debug("Group message sent to %s", room_id)
        return True

    async def send_private_message(self, text: str, receiver: str) -> bool:
        if not text or not receiver:
            logger.warning("Refusing to send a private message without text or receiver")
            return False
        try:
            await self._request(
                "POST", "v3.0/messages", payload=self._payload(receiver, RECEIVER_USER, text)
            )
        except ChatServiceError as exc:
            logger.error("Failed to send private message to %s: %s", receiver, exc)
            return False
        logger.debug("Private message sent to %s", receiver)
        return True

    async def send_response(
        self,
        message: str,
        *,
        response_channel: str = RESPONSE_CHANNEL_REQUEST,
        is_private_message: bool = False,
        sender: str | None = None,
    ) -> bool:
        """Reply on the channel a command came from, or publicly."""
        if (
            response_channel != RESPONSE_CHANNEL_PUBLIC
            and is_private_message
            and sender
        ):
            return await self.send_private_message(message, sender)
        return await self.send_group_message(message)

    def get_stats(self) -> dict[str, int]:
        return {"requests": self._requests, "failures": self._failures}
