"""
Logging setup for the automaton process.

Everything under the ``automaton_core`` logger (loop, heartbeat, runtime,
inference) shares one console handler on stderr and one rotating file.
Library loggers that chatter at INFO (HTTP connection pools, SQL echo)
are held at WARNING unless the automaton itself runs at DEBUG.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

PARENT_LOGGER = "automaton_core"
DEFAULT_LOG_FILE = Path.home() / ".automaton" / "logs" / "automaton.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
NOISY_LIBRARIES = ("urllib3", "sqlalchemy.engine")

_logging_configured = False


def resolve_log_file(log_file: Optional[str]) -> Optional[Path]:
    """``None``/``""`` → default file, ``"none"`` → no file, else the given path."""
    if log_file and log_file.lower() == "none":
        return None
    return Path(log_file).expanduser() if log_file else DEFAULT_LOG_FILE


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure automaton logging once per process.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: See ``resolve_log_file``.
    """
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    parent_logger = logging.getLogger(PARENT_LOGGER)
    parent_logger.setLevel(numeric_level)
    parent_logger.propagate = False

    # stdout stays free for command output (status --json, turns --json)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    parent_logger.addHandler(console)

    if numeric_level > logging.DEBUG:
        for name in NOISY_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)

    path = resolve_log_file(log_file)
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        str(path),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(fmt)
    parent_logger.addHandler(file_handler)
