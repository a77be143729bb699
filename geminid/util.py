"""Small helpers: bounded integer parsing and the program name."""

from __future__ import annotations

import os
import re
import sys

_LLONG_MIN = -(2**63)
_LLONG_MAX = 2**63 - 1
_NUMBER = re.compile(r"[ \t\n\v\f\r]*[+-]?[0-9]+")

_DEFAULT_NAME = "geminid"


class NumberError(ValueError):
    """A number failed to parse or is out of range.

    ``reason`` is one of ``"invalid"``, ``"too small"`` or ``"too large"``.
    """

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message if message is not None else reason)
        self.reason = reason


def strtonum(numstr: str, minval: int, maxval: int) -> int:
    """Parse a base-10 integer and check that it lies in [minval, maxval]."""
    if minval > maxval or not _NUMBER.fullmatch(numstr):
        raise NumberError("invalid")
    value = int(numstr.lstrip(" \t\n\v\f\r"))
    if value < _LLONG_MIN or value < minval:
        raise NumberError("too small")
    if value > _LLONG_MAX or value > maxval:
        raise NumberError("too large")
    return value


def parse_portno(text: str) -> int:
    """Parse a TCP port number."""
    try:
        return strtonum(text, 0, 0xFFFF)
    except NumberError as exc:
        raise NumberError(exc.reason, f"port number is {exc.reason}: {text}") from None


def program_name() -> str:
    """Short name the program was invoked as."""
    if sys.argv and sys.argv[0]:
        name = os.path.basename(sys.argv[0])
        if name:
            return name
    return _DEFAULT_NAME