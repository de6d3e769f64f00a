"""Runtime control of the daemon log level."""

from __future__ import annotations

import logging
import re

_NAMES = {
    "panic": 0,
    "fatal": 1,
    "error": 2,
    "warn": 3,
    "warning": 3,
    "info": 4,
    "debug": 5,
    "trace": 6,
}
_HIGHEST = 6
_INFO = 4
_PYTHON_LEVELS = {
    0: logging.CRITICAL,
    1: logging.CRITICAL,
    2: logging.ERROR,
    3: logging.WARNING,
    4: logging.INFO,
    5: logging.DEBUG,
    6: 5,
}
_INTEGER = re.compile(r"[+-]?[0-9]+")
_PACKAGE_LOGGER = __name__.partition(".")[0]


class _LevelState:
    level = _INFO


_state = _LevelState()


def set_log_level(level: str) -> None:
    """Set the log level from a name (``"debug"``) or a number (0 to 6)."""
    value = _NAMES.get(level.lower())
    if value is None:
        if not _INTEGER.fullmatch(level):
            raise ValueError(f"not a valid log level: {level!r}")
        value = int(level)
        if not 0 <= value <= _HIGHEST:
            raise ValueError(f"invalid log level: {value}")
    _state.level = value
    logging.getLogger(_PACKAGE_LOGGER).setLevel(_PYTHON_LEVELS[value])


def get_log_level() -> int:
    """Return the current log level as a number from 0 (panic) to 6 (trace)."""
    return _state.level