from __future__ import annotations

import json
import logging
import os
import socket
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# --------------------------------------------------------------------
# logging helpers
#   configure_logging() -> (re)configure the process-wide logger
#   get_logger()        -> configured logger (console-only until configured)
#   SUCCESS (25)        -> level for "done" messages
# --------------------------------------------------------------------

LOGGER_NAME = "service_manager"
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LOGGER: Optional[logging.Logger] = None  # lazily configured


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(
    level_name: str = "INFO",
    log_path: Optional[os.PathLike] = None,
    json_mode: bool = False,
) -> logging.Logger:
    """
    Create (or rebuild) the process-wide logger.

    Console goes to stdout; when *log_path* is given every record is also
    appended to that file. The file is never rotated.
    """
    global _LOGGER

    level = getattr(logging, str(level_name).upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False  # don't duplicate to root

    # clear old handlers (idempotent)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    formatter: logging.Formatter
    if json_mode:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    if log_path:
        path = Path(log_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot open log file {path}: {e} (console only)")
        else:
            fh.setLevel(level)
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    _LOGGER = logger
    logger.debug("logger initialized")
    return logger


def get_logger() -> logging.Logger:
    """Return the process-wide logger, configuring a console-only one if needed."""
    if _LOGGER is None:
        return configure_logging()
    return _LOGGER


# -------- small utilities --------

def timestamp(now: Optional[datetime] = None) -> str:
    """YYYYMMDD-HHMMSS in local time, as embedded in archive names."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


def human_size(num: float) -> str:
    for unit in ("B", "K", "M", "G", "T"):
        if abs(num) < 1024 or unit == "T":
            return f"{num:.0f}{unit}" if unit == "B" else f"{num:.1f}{unit}"
        num /= 1024.0
    return f"{num:.1f}T"


def dir_size(path: Path) -> int:
    """Apparent size in bytes of *path*; unreadable entries are skipped."""
    if path.is_symlink() or path.is_file():
        try:
            return path.lstat().st_size
        except OSError:
            return 0
    total = 0
    for root, _dirs, files in os.walk(path, onerror=lambda _e: None):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def local_ip() -> Optional[str]:
    """Best-effort primary LAN address (no packets are sent)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        ip = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
    if ip.startswith("127."):
        return None
    return ip


def preview(text: str, limit: int = 200) -> str:
    """Return a compact one-line preview for logs."""
    text = (text or "").replace("\n", "\\n")
    return (text[:limit] + "…") if len(text) > limit else text
