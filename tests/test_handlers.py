"""Tests for the default command handlers."""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from hangbridge.commands import CommandRegistry
from hangbridge.handlers import (
    format_uptime,
    handle_echo,
    handle_help,
    handle_ping,
    handle_state,
    handle_status,
    handle_unknown,
    nickname_for,
    register_default_commands,
)
from hangbridge.types import (
    CommandContext,
    CommandParams,
    ConnectionState,
    ConnectionStatus,
)

from .conftest import make_message


@pytest.fixture
def services(chat, tmp_path):
    registry = CommandRegistry()
    register_default_commands(registry)
    connection = MagicMock()
    connection.state = ConnectionState.CONNECTED
    connection.room_state = {
        "allUserData": {"u1": {"userProfile": {"nickname": "dj_u1"}}},
    }
    connection.get_connection_status.return_value = ConnectionStatus(
        is_connected=True, has_state=True, last_message_id="5", last_timestamp=6
    )
    return SimpleNamespace(
        chat=chat,
        config=SimpleNamespace(command_switch="/", log_dir=tmp_path),
        registry=registry,
        connection=connection,
        started_at=time.monotonic() - 3725,
    )


def params_for(services, command, args="", *, sender="u1", private=False, channel="request"):
    message = make_message(1, 10, sender=sender, text=f"/{command} {args}", private=private)
    return CommandParams(
        command=command,
        args=args,
        services=services,
        context=CommandContext(sender=sender, full_message=message, chat_message=message.text),
        response_channel=channel,
    )


class TestHelpers:
    def test_format_uptime(self):
        assert format_uptime(5) == "5s"
        assert format_uptime(3725) == "1h 2m 5s"
        assert format_uptime(90061) == "1d 1h 1m 1s"

    def test_nickname_for(self):
        state = {"allUserData": {"u1": {"userProfile": {"nickname": "n"}}}}
        assert nickname_for(state, "u1") == "n"
        assert nickname_for(state, "u2") is None
        assert nickname_for(None, "u1") is None


class TestHandlers:
    @pytest.mark.asyncio
    async def test_ping_replies_on_request_channel(self, services, chat):
        result = await handle_ping(params_for(services, "ping", sender="u1", private=True))
        assert result.success and result.should_respond
        chat.send_response.assert_awaited_once_with(
            "Pong! Bot is alive and responding.",
            response_channel="request",
            is_private_message=True,
            sender="u1",
        )

    @pytest.mark.asyncio
    async def test_help_lists_visible_commands(self, services):
        result = await handle_help(params_for(services, "help"))
        lines = result.response.splitlines()
        assert lines[0] == "Available commands:"
        assert lines[1].startswith("/echo - ")
        assert not any(line.startswith("/state") for line in lines)

    @pytest.mark.asyncio
    async def test_status(self, services):
        result = await handle_status(params_for(services, "status"))
        assert "Connection: connected" in result.response
        assert "Room state: loaded" in result.response
        assert "Uptime: 1h 2m" in result.response

    @pytest.mark.asyncio
    async def test_echo_uses_nickname(self, services):
        result = await handle_echo(params_for(services, "echo", "hi there"))
        assert result.response == "Echo: hi there (from dj_u1)"

    @pytest.mark.asyncio
    async def test_echo_unknown_sender(self, services):
        result = await handle_echo(params_for(services, "echo", "x", sender="u9"))
        assert result.response.endswith("(from unknown)")

    @pytest.mark.asyncio
    async def test_echo_without_text(self, services):
        result = await handle_echo(params_for(services, "echo", "  "))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_state_dump(self, services, tmp_path):
        result = await handle_state(params_for(services, "state"))
        assert result.success
        files = list(tmp_path.glob("currentState_*.log"))
        assert len(files) == 1
        assert "dj_u1" in files[0].read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_state_dump_without_state(self, services, tmp_path):
        services.connection.room_state = None
        result = await handle_state(params_for(services, "state"))
        assert result.success is False
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_state_dump_write_failure(self, services):
        with patch("hangbridge.handlers.append_record", side_effect=OSError("disk full")):
            result = await handle_state(params_for(services, "state"))
        assert result.success is False
        assert result.error == "disk full"
        assert "Failed to save room state" in result.response

    @pytest.mark.asyncio
    async def test_unknown(self, services):
        result = await handle_unknown(params_for(services, "bogus"))
        assert result.error == "Unknown command"
        assert '"bogus"' in result.response
        assert "/help" in result.response


class TestRegisterDefaults:
    def test_registered(self):
        registry = CommandRegistry()
        register_default_commands(registry)
        for name in ("help", "ping", "status", "echo", "state"):
            assert name in registry
        assert registry.get("state").hidden
        assert registry.resolve("missing").handler is handle_unknown
