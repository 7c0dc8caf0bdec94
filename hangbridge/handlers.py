# =============================================================================
# Hangbridge -- Default Command Handlers
# =============================================================================
#
# Small built-in command set.  Every handler takes a CommandParams, replies
# through services.chat.send_response on the channel the command came from,
# and returns a CommandResult.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .commands import CommandRegistry
from .socket_log import append_record, format_record
from .types import CommandParams, CommandResult


async def _reply(params: CommandParams, text: str) -> None:
    ctx = params.context
    await params.services.chat.send_response(
        text,
        response_channel=params.response_channel,
        is_private_message=ctx.full_message.is_private_message,
        sender=ctx.sender,
    )


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, secs = divmod(seconds, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def nickname_for(room_state: Any, user_id: str) -> str | None:
    """Look a user's nickname up in the room state, if it is there."""
    if not isinstance(room_state, dict):
        return None
    entry = (room_state.get("allUserData") or {}).get(user_id)
    if not isinstance(entry, dict):
        return None
    profile = entry.get("userProfile") or {}
    nickname = profile.get("nickname") if isinstance(profile, dict) else None
    return nickname if isinstance(nickname, str) and nickname else None


async def handle_ping(params: CommandParams) -> CommandResult:
    response = "Pong! Bot is alive and responding."
    await _reply(params, response)
    return CommandResult(success=True, response=response, should_respond=True)


async def handle_help(params: CommandParams) -> CommandResult:
    services = params.services
    switch = services.config.command_switch
    lines = ["Available commands:"]
    for spec in services.registry.visible():
        line = f"{switch}{spec.name}"
        if spec.description:
            line += f" - {spec.description}"
        lines.append(line)
    response = "\n".join(lines)
    await _reply(params, response)
    return CommandResult(success=True, response=response, should_respond=True)


async def handle_status(params: CommandParams) -> CommandResult:
    services = params.services
    uptime = format_uptime(time.monotonic() - services.started_at)
    status = services.connection.get_connection_status()
    response = (
        "Bot status:\n"
        f"Connection: {services.connection.state.value}\n"
        f"Room state: {'loaded' if status.has_state else 'missing'}\n"
        f"Uptime: {uptime}"
    )
    await _reply(params, response)
    return CommandResult(success=True, response=response, should_respond=True)


async def handle_echo(params: CommandParams) -> CommandResult:
    if not params.args.strip():
        response = "Echo what? Please provide a message to echo."
        await _reply(params, response)
        return CommandResult(success=False, response=response, should_respond=True)

    sender = params.context.sender
    display = nickname_for(params.services.connection.room_state, sender) or "unknown"
    response = f"Echo: {params.args} (from {display})"
    await _reply(params, response)
    return CommandResult(success=True, response=response, should_respond=True)


async def handle_state(params: CommandParams) -> CommandResult:
    """Dump the current room state to ``currentState_<time>.log``."""
    services = params.services
    state = services.connection.room_state
    if state is None:
        response = "No room state available to save."
        await _reply(params, response)
        return CommandResult(success=False, response=response, should_respond=True)

    stamp = datetime.now(UTC).isoformat().replace(":", "-").replace(".", "-")
    filename = f"currentState_{stamp}.log"
    try:
        await asyncio.to_thread(
            append_record, Path(services.config.log_dir) / filename, format_record(state)
        )
    except OSError as exc:
        response = f"Failed to save room state: {exc}"
        await _reply(params, response)
        return CommandResult(
            success=False, response=response, should_respond=True, error=str(exc)
        )

    response = f"Current room state saved to {filename}"
    await _reply(params, response)
    return CommandResult(success=True, response=response, should_respond=True)


async def handle_unknown(params: CommandParams) -> CommandResult:
    switch = params.services.config.command_switch
    response = (
        f'Unknown command: "{params.command}". '
        f"Type {switch}help for available commands."
    )
    await _reply(params, response)
    return CommandResult(
        success=False, response=response, should_respond=True, error="Unknown command"
    )


def register_default_commands(registry: CommandRegistry) -> None:
    registry.register("help", handle_help, description="Show this help message")
    registry.register("ping", handle_ping, description="Check if the bot is responding")
    registry.register("status", handle_status, description="Show bot status")
    registry.register("echo", handle_echo, description="Echo back your message")
    registry.register("state", handle_state, hidden=True)
    registry.set_fallback(handle_unknown)
