"""Directory listing on an already open directory descriptor."""

from __future__ import annotations

import os
from typing import Any, Callable, Optional


def _name(entry: Any) -> str:
    return getattr(entry, "name", entry)


def scandir_fd(
    fd: int,
    select: Optional[Callable[[str], bool]] = None,
    key: Optional[Callable[[str], Any]] = None,
) -> list[str]:
    """List the entry names of the directory open on ``fd``.

    The ``.`` and ``..`` entries are included, as the system reports them.
    Names for which ``select`` returns false are dropped; the result is sorted
    by ``key`` when one is given.  The descriptor is left open.  Raises
    ``OSError`` when the directory cannot be read.
    """
    names = [".", "..", *os.listdir(fd)]
    if select is not None:
        names = [name for name in names if select(name)]
    if key is not None:
        names.sort(key=key)
    return names


def select_non_dot(entry: Any) -> bool:
    """Keep every entry except ``.``."""
    return _name(entry) != "."


def select_non_dotdot(entry: Any) -> bool:
    """Keep every entry except ``.`` and ``..``."""
    return _name(entry) not in (".", "..")