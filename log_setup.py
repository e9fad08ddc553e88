"""Process-wide logging setup for the awning visualizer.

configure() is called once by each entry point (app.py, awning_cli.py);
every other module just does ``log = logging.getLogger(__name__)``.

Handlers:
  console       : LOG_LEVEL, one line per record
  logs/app.log  : DEBUG, rotating 5 × 5 MB, includes file:line
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOGS_DIR = Path(__file__).parent / "logs"

_CONSOLE_FMT = "%(asctime)s  %(levelname)-7s  %(name)s — %(message)s"
_FILE_FMT = "%(asctime)s  %(levelname)-7s  %(name)-14s  %(filename)s:%(lineno)d — %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"

# Client libraries that log every HTTP round-trip at INFO/DEBUG
_QUIET = ("urllib3", "requests", "httpx", "httpcore", "werkzeug",
          "openai", "anthropic", "replicate", "PIL")


def configure(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Attach console + rotating file handlers to the root logger.

    A no-op when the root logger already has handlers, so repeated calls
    (and test runners that install their own capture handlers) are safe.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(_CONSOLE_FMT, datefmt=_DATE_FMT))
    root.addHandler(console)

    target_dir = log_dir or LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    rotating = logging.handlers.RotatingFileHandler(
        target_dir / "app.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    rotating.setLevel(logging.DEBUG)
    rotating.setFormatter(logging.Formatter(_FILE_FMT, datefmt=_DATE_FMT))
    root.addHandler(rotating)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
