"""Tests for BridgeConfig."""

import logging

import pytest

from hangbridge.config import REQUIRED_VARS, BridgeConfig
from hangbridge.errors import ConfigError
from hangbridge.types import SocketLogLevel

BASE_ENV = {
    "BOT_UID": "bot",
    "BOT_USER_TOKEN": "token",
    "HANGOUT_ID": "room",
    "COMETCHAT_API_KEY": "key",
    "COMETCHAT_AUTH_TOKEN": "auth",
}


class TestFromMapping:
    def test_defaults(self):
        config = BridgeConfig.from_mapping(BASE_ENV)
        assert config.bot_uid == "bot"
        assert config.hangout_id == "room"
        assert config.command_switch == "/"
        assert config.socket_message_log_level is SocketLogLevel.OFF
        assert config.poll_interval == 5.0
        assert config.log_level == "INFO"

    def test_overrides(self):
        config = BridgeConfig.from_mapping(
            {
                **BASE_ENV,
                "COMMAND_SWITCH": "!",
                "SOCKET_MESSAGE_LOG_LEVEL": "debug",
                "POLL_INTERVAL": "2.5",
                "LOG_LEVEL": "debug",
                "LOG_DIR": "/tmp/hb",
            }
        )
        assert config.command_switch == "!"
        assert config.socket_message_log_level is SocketLogLevel.DEBUG
        assert config.poll_interval == 2.5
        assert config.log_level == "DEBUG"
        assert config.log_dir == "/tmp/hb"

    @pytest.mark.parametrize("name", REQUIRED_VARS)
    def test_missing_required(self, name):
        env = dict(BASE_ENV)
        env[name] = "  "
        with pytest.raises(ConfigError, match=name):
            BridgeConfig.from_mapping(env)

    def test_unknown_log_level_falls_back(self, caplog):
        with caplog.at_level(logging.WARNING, logger="hangbridge"):
            config = BridgeConfig.from_mapping({**BASE_ENV, "SOCKET_MESSAGE_LOG_LEVEL": "loud"})
        assert config.socket_message_log_level is SocketLogLevel.OFF
        assert "Unknown SOCKET_MESSAGE_LOG_LEVEL" in caplog.text

    @pytest.mark.parametrize("value", ["abc", "0", "-1"])
    def test_bad_poll_interval(self, value):
        with pytest.raises(ConfigError):
            BridgeConfig.from_mapping({**BASE_ENV, "POLL_INTERVAL": value})


class TestFromEnv:
    def test_env_file_loaded(self, tmp_path, monkeypatch):
        # set then delete so teardown removes whatever the file loads
        for name in (*REQUIRED_VARS, "COMMAND_SWITCH"):
            monkeypatch.setenv(name, "placeholder")
            monkeypatch.delenv(name)
        env_file = tmp_path / "bridge.env"
        env_file.write_text(
            "\n".join(f"{k}={v}" for k, v in BASE_ENV.items()) + "\nCOMMAND_SWITCH=!\n",
            encoding="utf-8",
        )
        config = BridgeConfig.from_env(env_file)
        assert config.bot_uid == "bot"
        assert config.command_switch == "!"

    def test_existing_environment_wins(self, tmp_path, monkeypatch):
        for name, value in BASE_ENV.items():
            monkeypatch.setenv(name, value)
        monkeypatch.setenv("BOT_UID", "from-env")
        env_file = tmp_path / "bridge.env"
        env_file.write_text("BOT_UID=from-file\n", encoding="utf-8")
        assert BridgeConfig.from_env(env_file).bot_uid == "from-env"

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            BridgeConfig.from_env(tmp_path / "nope.env")
