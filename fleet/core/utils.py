"""Shared utility functions for fleet core modules."""

import os
from pathlib import Path


def normalize_directory(directory: str | Path) -> str:
    """Normalize a directory path to its canonical absolute form.

    Session directories and hook event ``cwd`` values are both passed through
    here before they are compared or used as map keys, so that
    ``~/work/app``, ``/home/me/work/app/`` and a symlinked path all land on
    the same key.

    Args:
        directory: Directory path (relative, absolute, or ``~``-prefixed)

    Returns:
        Absolute, symlink-resolved path string without a trailing separator
    """
    expanded = os.path.expanduser(str(directory))
    return os.path.realpath(expanded)


def relative_prefix(root: str, base: str) -> str:
    """Return ``root`` relative to ``base`` using forward slashes.

    Returns an empty string when ``root`` and ``base`` are the same directory.
    """
    rel = os.path.relpath(root, base)
    if rel == os.curdir:
        return ""
    return Path(rel).as_posix()
