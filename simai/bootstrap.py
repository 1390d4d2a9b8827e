"""Reading the host list that maps ranks to addresses."""

from __future__ import annotations

from pathlib import Path
from typing import Dict

__all__ = ["read_host_file"]


def read_host_file(path: str | Path) -> Dict[int, str]:
    """Return a mapping of rank to address, one address per line of *path*."""
    with open(path, encoding="utf-8", newline="") as handle:
        content = handle.read()
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return dict(enumerate(lines))