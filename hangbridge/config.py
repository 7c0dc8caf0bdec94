# =============================================================================
# Hangbridge -- Configuration
# =============================================================================
#
# Settings come from the process environment, optionally primed from a
# .env file via python-dotenv (existing variables are never overridden).
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import find_dotenv, load_dotenv

from ._logging import logger
from .constants import DEFAULT_COMMAND_SWITCH, DEFAULT_SOCKET_URL, LOG_DIR, POLL_INTERVAL
from .errors import ConfigError
from .types import SocketLogLevel

REQUIRED_VARS = (
    "BOT_UID",
    "BOT_USER_TOKEN",
    "HANGOUT_ID",
    "COMETCHAT_API_KEY",
    "COMETCHAT_AUTH_TOKEN",
)


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    bot_uid: str
    bot_user_token: str
    hangout_id: str
    cometchat_api_key: str
    cometchat_auth_token: str
    socket_url: str = DEFAULT_SOCKET_URL
    command_switch: str = DEFAULT_COMMAND_SWITCH
    socket_message_log_level: SocketLogLevel = SocketLogLevel.OFF
    poll_interval: float = POLL_INTERVAL
    log_level: str = "INFO"
    log_dir: str = LOG_DIR

    @classmethod
    def from_mapping(cls, env: Mapping[str, str]) -> BridgeConfig:
        """Build a config from ``env``.  Raises ConfigError on bad values."""
        missing = [name for name in REQUIRED_VARS if not (env.get(name) or "").strip()]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        raw_level = (env.get("SOCKET_MESSAGE_LOG_LEVEL") or "OFF").strip().upper()
        level = SocketLogLevel.parse(raw_level)
        if level.value != raw_level:
            logger.warning(
                "Unknown SOCKET_MESSAGE_LOG_LEVEL %r, falling back to OFF", raw_level
            )

        raw_interval = env.get("POLL_INTERVAL") or str(POLL_INTERVAL)
        try:
            poll_interval = float(raw_interval)
        except ValueError as exc:
            raise ConfigError(f"POLL_INTERVAL must be a number, got {raw_interval!r}") from exc
        if poll_interval <= 0:
            raise ConfigError("POLL_INTERVAL must be positive")

        return cls(
            bot_uid=env["BOT_UID"].strip(),
            bot_user_token=env["BOT_USER_TOKEN"].strip(),
            hangout_id=env["HANGOUT_ID"].strip(),
            cometchat_api_key=env["COMETCHAT_API_KEY"].strip(),
            cometchat_auth_token=env["COMETCHAT_AUTH_TOKEN"].strip(),
            socket_url=env.get("SOCKET_URL") or DEFAULT_SOCKET_URL,
            command_switch=env.get("COMMAND_SWITCH") or DEFAULT_COMMAND_SWITCH,
            socket_message_log_level=level,
            poll_interval=poll_interval,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            log_dir=env.get("LOG_DIR") or LOG_DIR,
        )

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> BridgeConfig:
        """Load ``env_file`` (or ``./.env``) into the environment, then read it."""
        if env_file is not None and not Path(env_file).is_file():
            raise ConfigError(f"Env file not found: {env_file}")
        load_dotenv(env_file or find_dotenv(usecwd=True), override=False)
        return cls.from_mapping(os.environ)
