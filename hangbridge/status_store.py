# =============================================================================
# Hangbridge -- Status Store
# =============================================================================
#
# Process-wide key/value store for bookkeeping that other components may
# want to read (last processed message IDs, per-user tracking, nickname).
# In-memory only; snapshot() hands back a plain dict for callers that want
# to save it somewhere.
# =============================================================================

from __future__ import annotations

import copy
from typing import Any

from ._logging import logger


class StatusStore:
    """Plain mapping of status keys to JSON-like values."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)
        logger.debug("Status updated: %s = %r", key, value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._values)
