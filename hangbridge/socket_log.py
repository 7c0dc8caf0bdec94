# =============================================================================
# Hangbridge -- Socket Message Log
# =============================================================================
#
# Append-only diagnostic files for inbound socket traffic.
#
#   OFF    nothing is written
#   ON     one fixed file per stream (statefulMessage.log, ...)
#   DEBUG  one new file per write: NNNNNN_<stream>[_<event>].log, where
#          NNNNNN is a counter shared by every stream
#
# Each record is "<ISO-8601 timestamp>: <pretty JSON>\n".
# =============================================================================

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import orjson

from ._logging import logger
from .constants import DEBUG_COUNTER_WIDTH, INITIAL_STATE_LOG, LOG_DIR
from .types import SocketLogLevel


def _event_name(data: Any) -> str:
    if isinstance(data, dict):
        name = data.get("name")
        if not name and isinstance(data.get("message"), dict):
            name = data["message"].get("name")
        return str(name) if name else ""
    return ""


def _with_extension(filename: str) -> str:
    return filename if Path(filename).suffix else f"{filename}.log"


def format_record(data: Any, when: datetime | None = None) -> str:
    """Render one log record: timestamp, colon, 2-space indented JSON."""
    stamp = (when or datetime.now(UTC)).isoformat()
    body = orjson.dumps(data, option=orjson.OPT_INDENT_2, default=str).decode()
    return f"{stamp}: {body}\n"


def append_record(path: Path, record: str) -> None:
    """Append one formatted record to ``path``, creating its directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(record)


class SocketMessageLogger:
    """Writes socket payloads to files under ``log_dir`` per the level policy.

    Args:
        level: ``OFF``, ``ON`` or ``DEBUG`` (strings are accepted).
        log_dir: Directory for the files, created on first write.
    """

    def __init__(
        self,
        level: SocketLogLevel | str = SocketLogLevel.OFF,
        log_dir: str | Path = LOG_DIR,
    ) -> None:
        self._level = SocketLogLevel.parse(level)
        self._log_dir = Path(log_dir)
        self._counter = 0
        self._counter_lock = threading.Lock()
        self._write_failures = 0

    @property
    def level(self) -> SocketLogLevel:
        return self._level

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def next_path(self, filename: str, data: Any = None) -> Path:
        """Pick the target file for one write, advancing the DEBUG counter."""
        if self._level is not SocketLogLevel.DEBUG:
            return self._log_dir / _with_extension(filename)

        with self._counter_lock:
            self._counter += 1
            seq = self._counter

        base = filename[:-4] if filename.endswith(".log") else filename
        name = _event_name(data)
        prefix = str(seq).zfill(DEBUG_COUNTER_WIDTH)
        stem = f"{prefix}_{base}_{name}" if name else f"{prefix}_{base}"
        return self._log_dir / _with_extension(stem)

    async def write(self, filename: str, data: Any) -> Path | None:
        """Append ``data`` to the stream ``filename``.  Never raises."""
        if self._level is SocketLogLevel.OFF:
            return None
        try:
            path = self.next_path(filename, data)
            record = format_record(data)
            await asyncio.to_thread(append_record, path, record)
            return path
        except Exception as exc:
            self._write_failures += 1
            logger.error("Failed to write to log file %s: %s", filename, exc)
            return None

    async def write_initial_state(self, state: Any) -> Path | None:
        """DEBUG only: dump the freshly joined room snapshot."""
        if self._level is not SocketLogLevel.DEBUG:
            return None
        path = self._log_dir / INITIAL_STATE_LOG
        try:
            await asyncio.to_thread(append_record, path, format_record(state))
            logger.debug("Initial state logged to %s", INITIAL_STATE_LOG)
            return path
        except Exception as exc:
            self._write_failures += 1
            logger.error("Failed to log initial state: %s", exc)
            return None

    def get_stats(self) -> dict[str, Any]:
        return {
            "level": self._level.value,
            "counter": self._counter,
            "write_failures": self._write_failures,
        }
