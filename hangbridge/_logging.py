# =============================================================================
# Hangbridge -- Logging
# =============================================================================
#
# One package logger; handlers are installed by the CLI, never on import.
# =============================================================================

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

logger = logging.getLogger("hangbridge")

LOG_FORMAT = "%(asctime)s [%(levelname)s]: %(message)s"
LOG_FILENAME = "hangbridge.log"
LOG_BACKUP_DAYS = 30


def configure_logging(level: str | int = "INFO", log_dir: str | Path = "logs") -> None:
    """Install console + daily rotating file handlers on the package logger.

    Calling it twice replaces the previously installed handlers.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    rotating = logging.handlers.TimedRotatingFileHandler(
        log_path / LOG_FILENAME,
        when="midnight",
        backupCount=LOG_BACKUP_DAYS,
        encoding="utf-8",
    )
    rotating.setFormatter(formatter)
    logger.addHandler(rotating)

    logger.setLevel(level)
    logger.propagate = False
