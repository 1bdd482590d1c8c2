from __future__ import annotations

import atexit
import datetime as dt
import logging
import os
from pathlib import Path
from typing import Optional

LOG_DIR = Path(os.environ.get("TAXLOT_TOOL_HOME", Path.home() / ".taxlot_tool")) / "logs"

_LOGGER = logging.getLogger("taxlot_tool")
_SESSION_LOG_PATH: Path | None = None
_SHUTDOWN_REGISTERED = False


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> Path:
    """Attach a per-session file handler to the ``taxlot_tool`` logger.

    Setting ``TAXLOT_TOOL_LOG=debug`` also echoes records to stderr.
    Returns the session log path.
    """

    global _SESSION_LOG_PATH, _SHUTDOWN_REGISTERED

    if _SESSION_LOG_PATH is not None:
        return _SESSION_LOG_PATH

    target_dir = log_dir or LOG_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d-%H%M%S")
    _SESSION_LOG_PATH = target_dir / f"session-{timestamp}.txt"
    session_handler = logging.FileHandler(_SESSION_LOG_PATH, encoding="utf-8")
    session_handler.setLevel(logging.DEBUG)
    session_handler.setFormatter(formatter)
    _LOGGER.addHandler(session_handler)

    if os.environ.get("TAXLOT_TOOL_LOG", "").lower() == "debug":
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(logging.DEBUG)
        stream_handler.setFormatter(formatter)
        _LOGGER.addHandler(stream_handler)
        level = "DEBUG"

    _LOGGER.setLevel(getattr(logging, level.upper(), logging.INFO))
    _LOGGER.propagate = False
    _LOGGER.info("Session log initialised at %s", _SESSION_LOG_PATH)

    if not _SHUTDOWN_REGISTERED:
        atexit.register(logging.shutdown)
        _SHUTDOWN_REGISTERED = True
    return _SESSION_LOG_PATH


def get_session_log_path() -> Optional[Path]:
    return _SESSION_LOG_PATH


__all__ = ["LOG_DIR", "configure_logging", "get_session_log_path"]
