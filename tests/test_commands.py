"""Tests for command parsing, the registry and the dispatcher."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from hangbridge.commands import (
    CommandDispatcher,
    CommandRegistry,
    make_parser,
    parse_command,
)
from hangbridge.types import CommandParams, CommandResult, ParsedCommand

from .conftest import make_message


class TestParseCommand:
    def test_name_and_remainder(self):
        assert parse_command("/Echo  hello world ") == ParsedCommand(
            is_command=True, command="echo", remainder="hello world"
        )

    def test_leading_whitespace(self):
        assert parse_command("   /ping").command == "ping"

    def test_no_remainder(self):
        assert parse_command("/ping").remainder == ""

    def test_plain_text(self):
        assert parse_command("hello /ping").is_command is False

    def test_bare_switch(self):
        assert parse_command("/").is_command is False
        assert parse_command("/   ").is_command is False

    def test_non_string(self):
        assert parse_command(None).is_command is False

    def test_custom_switch(self):
        parser = make_parser("!")
        assert parser("!help me").command == "help"
        assert parser("/help").is_command is False

    def test_multichar_switch(self):
        assert parse_command("bot: status", switch="bot:").command == "status"


class TestRegistry:
    def test_register_and_lookup(self):
        registry = CommandRegistry()
        handler = MagicMock()
        registry.register("Ping", handler, description="Check")
        assert "ping" in registry
        assert "PING" in registry
        assert registry.get("ping").handler is handler
        assert len(registry) == 1

    def test_register_many(self):
        registry = CommandRegistry()
        registry.register_many({"a": MagicMock(), "b": MagicMock()}, legacy=True)
        assert registry.get("a").legacy
        assert registry.get("b").legacy

    def test_unregister(self):
        registry = CommandRegistry()
        registry.register("a", MagicMock())
        registry.unregister("a")
        registry.unregister("missing")
        assert "a" not in registry

    def test_resolve_falls_back(self):
        registry = CommandRegistry()
        fallback = MagicMock()
        registry.set_fallback(fallback)
        assert registry.resolve("missing").handler is fallback

    def test_disabled_resolves_to_fallback(self):
        registry = CommandRegistry()
        registry.register("a", MagicMock())
        assert registry.set_enabled("a", False) is True
        assert registry.resolve("a") is None
        assert registry.set_enabled("missing", True) is False

    def test_visible_sorted_and_filtered(self):
        registry = CommandRegistry()
        registry.register("zeta", MagicMock())
        registry.register("alpha", MagicMock())
        registry.register("secret", MagicMock(), hidden=True)
        registry.register("off", MagicMock(), enabled=False)
        assert [s.name for s in registry.visible()] == ["alpha", "zeta"]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_params_convention(self):
        registry = CommandRegistry()
        handler = AsyncMock(return_value=CommandResult(success=True, response="ok"))
        registry.register("echo", handler, response_channel="public")
        services = object()
        dispatcher = CommandDispatcher(registry, services, parser=parse_command)

        message = make_message(1, 10, sender={"uid": "u1"}, text="/echo hi there")
        result = await dispatcher.dispatch(message.text, message)

        assert result.response == "ok"
        params = handler.await_args.args[0]
        assert isinstance(params, CommandParams)
        assert params.command == "echo"
        assert params.args == "hi there"
        assert params.services is services
        assert params.response_channel == "public"
        assert params.context.sender == "u1"
        assert params.context.full_message is message
        assert params.context.chat_message == "/echo hi there"

    @pytest.mark.asyncio
    async def test_legacy_convention(self):
        registry = CommandRegistry()
        calls = []

        def legacy(command, remainder, services, context):
            calls.append((command, remainder, services, context.sender))
            return CommandResult(success=True)

        registry.register("old", legacy, legacy=True)
        dispatcher = CommandDispatcher(registry, "svc", parser=parse_command)
        await dispatcher.dispatch("/old a b", make_message(1, 10, sender="u2"))
        assert calls == [("old", "a b", "svc", "u2")]

    @pytest.mark.asyncio
    async def test_dict_result_coerced(self):
        registry = CommandRegistry()
        registry.register(
            "d",
            lambda params: {"success": True, "response": "r", "shouldRespond": True},
        )
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        result = await dispatcher.dispatch("/d", make_message(1, 10))
        assert result == CommandResult(success=True, response="r", should_respond=True)

    @pytest.mark.asyncio
    async def test_unknown_goes_to_fallback(self):
        registry = CommandRegistry()
        fallback = AsyncMock(return_value=CommandResult(success=False, error="Unknown command"))
        registry.set_fallback(fallback)
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        result = await dispatcher.dispatch("/nope", make_message(1, 10))
        assert result.error == "Unknown command"
        assert fallback.await_args.args[0].command == "nope"

    @pytest.mark.asyncio
    async def test_not_a_command(self):
        registry = CommandRegistry()
        handler = AsyncMock()
        registry.set_fallback(handler)
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        assert await dispatcher.dispatch("just chatting", make_message(1, 10)) is None
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_error_reraised(self, caplog):
        registry = CommandRegistry()
        registry.register("boom", AsyncMock(side_effect=ValueError("bad args")))
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        with caplog.at_level(logging.ERROR, logger="hangbridge"):
            with pytest.raises(ValueError):
                await dispatcher.dispatch("/boom", make_message(1, 10))
        assert "Failed to process command 'boom': bad args" in caplog.text
        assert dispatcher.get_stats() == {"dispatched": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_wrong_return_type_is_error(self):
        registry = CommandRegistry()
        registry.register("x", lambda params: "not a result")
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        with pytest.raises(TypeError):
            await dispatcher.dispatch("/x", make_message(1, 10))

    @pytest.mark.asyncio
    async def test_no_parser_warns(self, caplog):
        dispatcher = CommandDispatcher(CommandRegistry())
        with caplog.at_level(logging.WARNING, logger="hangbridge"):
            assert await dispatcher.dispatch("/ping", make_message(1, 10)) is None
        assert "No command parser configured" in caplog.text

    @pytest.mark.asyncio
    async def test_no_registry_warns(self, caplog):
        dispatcher = CommandDispatcher(None, parser=parse_command)
        with caplog.at_level(logging.WARNING, logger="hangbridge"):
            assert await dispatcher.dispatch("/ping", make_message(1, 10)) is None
        assert "no dispatcher configured" in caplog.text

    @pytest.mark.asyncio
    async def test_no_handler_and_no_fallback(self, caplog):
        dispatcher = CommandDispatcher(CommandRegistry(), parser=parse_command)
        with caplog.at_level(logging.WARNING, logger="hangbridge"):
            assert await dispatcher.dispatch("/ping", make_message(1, 10)) is None
        assert "No handler for command 'ping'" in caplog.text

    @pytest.mark.asyncio
    async def test_bind_services(self):
        registry = CommandRegistry()
        handler = AsyncMock(return_value=CommandResult(success=True))
        registry.register("p", handler)
        dispatcher = CommandDispatcher(registry, parser=parse_command)
        dispatcher.bind_services("late")
        await dispatcher.dispatch("/p", make_message(1, 10))
        assert handler.await_args.args[0].services == "late"
