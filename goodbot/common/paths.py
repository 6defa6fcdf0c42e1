from __future__ import annotations

import os
import stat
from pathlib import Path


class HostEnvironmentError(RuntimeError):
    """The home or the working directory of this process cannot be determined."""


def _home() -> Path:
    try:
        return Path.home()
    except (KeyError, RuntimeError) as e:
        raise HostEnvironmentError(f"cannot determine home directory: {e}") from e


def _cwd() -> Path:
    try:
        return Path(os.getcwd())
    except OSError as e:
        raise HostEnvironmentError(f"cannot determine working directory: {e}") from e


def resolve_path(raw: str | os.PathLike) -> Path:
    """Turn a user-supplied path into an absolute one.

    ``~`` and ``~/x`` expand to the home directory, ``.``/``..`` prefixed paths
    are taken relative to the working directory. The path does not need to
    exist.
    """
    s = os.fspath(raw)
    if s == "~":
        return _home()
    if s.startswith("~/"):
        return Path(os.path.normpath(str(_home() / s[2:])))
    if s.startswith("."):
        return Path(os.path.normpath(str(_cwd() / s)))
    if os.path.isabs(s):
        return Path(os.path.normpath(s))
    return Path(os.path.normpath(str(_cwd() / s)))


def path_exists(path: str | os.PathLike) -> bool:
    return Path(path).exists()


def is_directory(path: str | os.PathLike) -> bool:
    # stat() raises FileNotFoundError for a missing path; callers validate first.
    return stat.S_ISDIR(Path(path).stat().st_mode)


def parent_dir(path: str | os.PathLike) -> Path:
    """Absolute directory holding ``path`` (bind mount source)."""
    return resolve_path(path).parent
