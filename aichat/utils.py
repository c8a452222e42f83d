"""Logging setup shared by the API and the CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
LOG_FILE_NAME = "aichat.log"


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Log to the console and, when ``log_dir`` is given, to ``<log_dir>/aichat.log``.

    Safe to call more than once; handlers are only added the first time.
    """
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if not any(getattr(handler, "_aichat_console", False) for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._aichat_console = True  # type: ignore[attr-defined]
        root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        log_file = (path / LOG_FILE_NAME).resolve()
        has_file = any(
            isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file
            for handler in root.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
            root.info("Logging to %s", log_file)
    return root
