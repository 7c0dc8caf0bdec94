# =============================================================================
# Hangbridge -- Commands
# =============================================================================
#
# Parsing of chat text into commands, the handler registry, and the
# dispatcher the message poller hands every foreign message to.
#
# Handlers use one of two calling conventions, recorded at registration:
#   legacy:  handler(command, remainder, services, context)
#   params:  handler(CommandParams(command, args, services, context, channel))
# Either may be sync or async and must return a CommandResult.
# =============================================================================

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass
from typing import Any, Callable

from ._logging import logger
from .constants import DEFAULT_COMMAND_SWITCH, RESPONSE_CHANNEL_REQUEST
from .types import ChatMessage, CommandContext, CommandParams, CommandResult, ParsedCommand

CommandHandler = Callable[..., Any]
CommandParser = Callable[[str], ParsedCommand]


def parse_command(text: Any, switch: str = DEFAULT_COMMAND_SWITCH) -> ParsedCommand:
    """Split ``"/name rest of text"`` into a lower-cased name and remainder."""
    if not isinstance(text, str) or not switch:
        return ParsedCommand(is_command=False)
    stripped = text.strip()
    if not stripped.startswith(switch):
        return ParsedCommand(is_command=False)

    parts = stripped[len(switch):].split(maxsplit=1)
    if not parts:
        return ParsedCommand(is_command=False)
    remainder = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(is_command=True, command=parts[0].lower(), remainder=remainder)


def make_parser(switch: str = DEFAULT_COMMAND_SWITCH) -> CommandParser:
    return functools.partial(parse_command, switch=switch)


@dataclass
class CommandSpec:
    """A registered command and its metadata."""

    name: str
    handler: CommandHandler
    legacy: bool = False
    description: str = ""
    hidden: bool = False
    enabled: bool = True
    response_channel: str = RESPONSE_CHANNEL_REQUEST


class CommandRegistry:
    """Command name -> handler lookup with a fallback for unknown names.

    Example::

        registry = CommandRegistry()
        registry.register("ping", handle_ping, description="Check the bot")
        registry.set_fallback(handle_unknown)
    """

    def __init__(self) -> None:
        self._commands: dict[str, CommandSpec] = {}
        self._fallback: CommandSpec | None = None

    def register(
        self,
        name: str,
        handler: CommandHandler,
        *,
        legacy: bool = False,
        description: str = "",
        hidden: bool = False,
        enabled: bool = True,
        response_channel: str = RESPONSE_CHANNEL_REQUEST,
    ) -> None:
        """Register ``handler`` under ``name``, replacing any previous one."""
        key = name.strip().lower()
        self._commands[key] = CommandSpec(
            name=key,
            handler=handler,
            legacy=legacy,
            description=description,
            hidden=hidden,
            enabled=enabled,
            response_channel=response_channel,
        )
        logger.debug("Registered command: %s", key)

    def register_many(self, handlers: dict[str, CommandHandler], *, legacy: bool = False) -> None:
        for name, handler in handlers.items():
            self.register(name, handler, legacy=legacy)

    def unregister(self, name: str) -> None:
        self._commands.pop(name.strip().lower(), None)

    def set_fallback(self, handler: CommandHandler, *, legacy: bool = False) -> None:
        self._fallback = CommandSpec(name="", handler=handler, legacy=legacy, hidden=True)

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Toggle a command; returns False if ``name`` is not registered."""
        spec = self._commands.get(name.strip().lower())
        if spec is None:
            return False
        spec.enabled = enabled
        logger.info("Command %s %s", spec.name, "enabled" if enabled else "disabled")
        return True

    def get(self, name: str) -> CommandSpec | None:
        return self._commands.get(name.strip().lower())

    def resolve(self, name: str) -> CommandSpec | None:
        """Enabled command for ``name``, else the fallback (may be None)."""
        spec = self._commands.get(name)
        if spec is not None and spec.enabled:
            return spec
        return self._fallback

    def visible(self) -> list[CommandSpec]:
        """Enabled, non-hidden commands sorted by name (for help output)."""
        return sorted(
            (s for s in self._commands.values() if s.enabled and not s.hidden),
            key=lambda s: s.name,
        )

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)


def _coerce_result(command: str, result: Any) -> CommandResult:
    if isinstance(result, CommandResult):
        return result
    if isinstance(result, dict):
        return CommandResult(
            success=bool(result.get("success")),
            response=str(result.get("response") or ""),
            should_respond=bool(result.get("shouldRespond", result.get("should_respond"))),
            error=result.get("error"),
        )
    raise TypeError(f"Handler for '{command}' returned {type(result).__name__}, not a CommandResult")


class CommandDispatcher:
    """Parses chat text and runs the matching command handler.

    Args:
        registry: Handler lookup; ``None`` disables dispatching.
        services: Passed through to every handler.
        parser: Text -> ParsedCommand; ``None`` disables parsing.
    """

    def __init__(
        self,
        registry: CommandRegistry | None,
        services: Any = None,
        *,
        parser: CommandParser | None = None,
    ) -> None:
        self._registry = registry
        self._services = services
        self._parser = parser
        self._dispatched = 0
        self._failed = 0

    @property
    def registry(self) -> CommandRegistry | None:
        return self._registry

    def bind_services(self, services: Any) -> None:
        self._services = services

    async def dispatch(self, text: str, message: ChatMessage) -> CommandResult | None:
        """Run the handler for ``text`` if it is a command.

        Returns None when nothing was dispatched.  Handler exceptions are
        logged and re-raised.
        """
        if self._parser is None:
            logger.warning("No command parser configured, skipping message %s", message.id)
            return None

        parsed = self._parser(text)
        if not parsed.is_command:
            return None

        if self._registry is None:
            logger.warning(
                "Command '%s' recognised but no dispatcher configured", parsed.command
            )
            return None

        spec = self._registry.resolve(parsed.command)
        if spec is None:
            logger.warning("No handler for command '%s'", parsed.command)
            return None

        context = CommandContext(
            sender=message.sender_id, full_message=message, chat_message=text
        )
        logger.info("Processing command '%s' from %s", parsed.command, context.sender)

        try:
            if spec.legacy:
                outcome = spec.handler(
                    parsed.command, parsed.remainder, self._services, context
                )
            else:
                outcome = spec.handler(
                    CommandParams(
                        command=parsed.command,
                        args=parsed.remainder,
                        services=self._services,
                        context=context,
                        response_channel=spec.response_channel,
                    )
                )
            if inspect.isawaitable(outcome):
                outcome = await outcome
            result = _coerce_result(parsed.command, outcome)
        except Exception as exc:
            self._failed += 1
            logger.error("Failed to process command '%s': %s", parsed.command, exc)
            raise

        self._dispatched += 1
        if not result.success:
            logger.debug(
                "Command '%s' reported failure: %s", parsed.command, result.error or result.response
            )
        return result

    def get_stats(self) -> dict[str, int]:
        return {"dispatched": self._dispatched, "failed": self._failed}
