"""
Logging setup and log-value sanitizing.
"""

from __future__ import annotations

import logging
import re

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the ``kb`` logger hierarchy.

    Safe to call more than once; only the level is updated after the first call.
    """
    root = logging.getLogger("kb")
    root.setLevel(level.upper())

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def sanitize(value: object, max_length: int = 200) -> str:
    """
    Strip control characters from user-supplied values before logging them.

    File names and paths come straight from uploads; a raw newline in one
    would forge extra log lines.
    """
    if value is None:
        return ""

    text = _CONTROL_CHARS.sub("", str(value))
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text
