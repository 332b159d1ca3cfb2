# backoffice_hub/logging_setup.py
"""
File logging for the backoffice API.

One rotating file per data root (name, size and backup count come from
Settings). The root logger and the server loggers share the same handler,
so running setup_logging twice never doubles the output.
"""
from __future__ import annotations
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

from backoffice_hub.settings import Settings

FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


def _find_handler(logger: logging.Logger, log_path: Path) -> Optional[logging.Handler]:
    target = os.path.abspath(log_path)
    for h in logger.handlers:
        if getattr(h, "baseFilename", None) == target:
            return h
    return None


def setup_logging(settings: Settings) -> Path:
    """Attach the backoffice log file to the root and server loggers; returns its path."""
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_path = settings.log_dir / settings.LOG_FILE_NAME
    level = logging.getLevelName(settings.LOG_LEVEL)

    root = logging.getLogger()
    handler = _find_handler(root, log_path)
    if handler is None:
        handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(handler)
    handler.setLevel(level)
    root.setLevel(level)

    for name in SERVER_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if _find_handler(lg, log_path) is None:
            lg.addHandler(handler)

    return log_path
