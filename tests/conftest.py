"""Shared fixtures for hangbridge tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hangbridge.cursors import CursorStore
from hangbridge.status_store import StatusStore
from hangbridge.types import ChatMessage

BOT_ID = "bot-uid"
ROOM_ID = "room-uuid"


def make_message(
    msg_id,
    sent_at,
    sender="user-1",
    text="/ping",
    *,
    private=False,
) -> ChatMessage:
    return ChatMessage(
        id=str(msg_id),
        sent_at=sent_at,
        sender=sender,
        text=text,
        is_private_message=private,
        recipient_id=sender if private else None,
    )


@pytest.fixture
def status():
    return StatusStore()


@pytest.fixture
def cursors(status):
    return CursorStore(status, bot_id=BOT_ID, clock=lambda: 1_000)


@pytest.fixture
def chat():
    """Chat service double with empty fetches."""
    c = MagicMock()
    c.join_group = AsyncMock()
    c.fetch_group_messages = AsyncMock(return_value=[])
    c.fetch_private_messages = AsyncMock(return_value=[])
    c.latest_group_message_id = AsyncMock(return_value=None)
    c.send_response = AsyncMock(return_value=True)
    c.aclose = AsyncMock()
    return c
