# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILENAME = "import_hub.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# loggers that write next to ours; stock movements are logged by import_hub.services.*
WIRED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "import_hub")


def log_path_for(settings) -> Path:
    return Path(settings.DATA_ROOT).expanduser() / "logs" / LOG_FILENAME


def _level(settings) -> int:
    level = logging.getLevelName(str(settings.LOG_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def _has_file_handler(lg: logging.Logger) -> bool:
    return any(str(getattr(h, "baseFilename", "")).endswith(LOG_FILENAME) for h in lg.handlers)


def setup_logging(settings) -> Path:
    """Rotating file log at DATA_ROOT/logs/import_hub.log plus a console handler. Safe to call twice."""
    log_path = log_path_for(settings)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = _level(settings)
    fmt = logging.Formatter(LOG_FORMAT)

    file_handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(fmt)
    file_handler.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    if not _has_file_handler(root):
        root.addHandler(file_handler)
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console.setLevel(level)
        root.addHandler(console)

    for name in WIRED_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(level)
        # uvicorn loggers do not propagate to root
        if name.startswith("uvicorn") and not _has_file_handler(lg):
            lg.addHandler(file_handler)

    return log_path
