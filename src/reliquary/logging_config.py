import logging
import os
import sys
from typing import Optional, TextIO, Union

LOG_LEVEL_ENV = "RELIQUARY_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s: %(message)s"


def _resolve_level(level: Union[int, str]) -> int:
    override = os.getenv(LOG_LEVEL_ENV)
    if override:
        level = override
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def configure_logging(level: Union[int, str] = logging.INFO, stream: Optional[TextIO] = None) -> logging.Handler:
    """Send log records to stdout (or ``stream``) and return the installed handler.

    RELIQUARY_LOG_LEVEL, when set, wins over ``level``. The thread name is part of
    every line since disk operations log from the worker thread.
    """
    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    # Drop earlier handlers so repeated calls don't duplicate output
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    return handler
