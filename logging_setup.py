import logging
import sys
from typing import Optional, Union

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    """Attach a stdout handler to the root logger once and set its level.

    `level` may be a logging constant, a level name, or a numeric string.
    Anything unrecognised falls back to INFO.
    """
    if isinstance(level, int):
        desired = level
    elif isinstance(level, str):
        name = level.strip().upper()
        desired = int(name) if name.isdigit() else _LEVELS.get(name, logging.INFO)
    else:
        desired = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
    root.setLevel(desired)
