"""
core/log_setup.py -- Root logger configuration: console plus optional files.

Sinks:
  console          -- every record at LOG_LEVEL and above
  <log_dir>/combined.log -- same records, persisted
  <log_dir>/error.log    -- ERROR and above only

Called once by the process entry point (create_app / main.py). force=True
replaces handlers left by an earlier call so re-running it (tests, reloads)
never duplicates output.

Records must never include password hashes or raw tokens; log user ids and
external ids only.
"""

import logging
from pathlib import Path

from core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(settings: Settings) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "combined.log", encoding="utf-8"))
        error_handler = logging.FileHandler(log_dir / "error.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
