"""Read-only view over a good-bot project directory.

A project holds scene directories; a scene is recognized purely by its name
containing ``SCENE_TOKEN``. Each scene keeps its asciicast recordings in
``asciicasts/`` and receives rendered GIFs in ``gifs/``. Nothing here is
cached: every call re-reads the filesystem.
"""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from goodbot.common.paths import resolve_path


SCENE_TOKEN = "scene_"

RECORDINGS_DIR = "asciicasts"
RENDERS_DIR = "gifs"
READ_DIR = "read"
FINAL_DIR = "final"

RECORDING_EXT = ".cast"
RENDER_EXT = ".gif"

RENDERS_DIR_MODE = 0o755

_mkdir_lock = threading.Lock()


class NotInProjectError(LookupError):
    pass


class RecordingsDirAbsent(FileNotFoundError):
    """The scene has no recordings directory at all (not the same as zero recordings)."""


@dataclass(frozen=True)
class SceneRef:
    name: str
    path: Path


def is_scene_name(name: str) -> bool:
    # substring match: "intro_scene_1" is a scene too
    return SCENE_TOKEN in name


def list_scenes(project_path: str | os.PathLike) -> List[SceneRef]:
    project = resolve_path(project_path)
    scenes: List[SceneRef] = []
    with os.scandir(project) as it:
        for entry in it:
            if not entry.is_dir():
                continue
            if is_scene_name(entry.name):
                scenes.append(SceneRef(name=entry.name, path=project / entry.name))
    return scenes


def list_recordings(scene_path: str | os.PathLike) -> List[Path]:
    casts_dir = resolve_path(scene_path) / RECORDINGS_DIR
    if not casts_dir.is_dir():
        raise RecordingsDirAbsent(f"no {RECORDINGS_DIR} directory in scene {casts_dir.parent}")
    out: List[Path] = []
    with os.scandir(casts_dir) as it:
        for entry in it:
            if entry.is_file() and os.path.splitext(entry.name)[1] == RECORDING_EXT:
                out.append(casts_dir / entry.name)
    return out


def find_owning_scene(item_path: str | os.PathLike) -> Path:
    """Walk up from ``item_path`` to the first directory that is a scene.

    A file is never its own scene, whatever its name.

    Raises FileNotFoundError when the item does not exist and
    NotInProjectError when the filesystem root is reached first.
    """
    item = resolve_path(item_path)
    if not item.exists():
        raise FileNotFoundError(f"no such file or directory: {item}")

    cur = item if item.is_dir() else item.parent
    while not is_scene_name(cur.name):
        if cur.parent == cur:
            raise NotInProjectError(f"{item} does not seem to be saved in a Good Bot project")
        cur = cur.parent
    return cur


def render_artifact_path(recording: str | os.PathLike) -> Path:
    rec = resolve_path(recording)
    scene = find_owning_scene(rec)
    return scene / RENDERS_DIR / (rec.stem + RENDER_EXT)


def ensure_renders_dir(scene_path: str | os.PathLike) -> Path:
    d = resolve_path(scene_path) / RENDERS_DIR
    with _mkdir_lock:
        d.mkdir(mode=RENDERS_DIR_MODE, exist_ok=True)
    return d


def final_dir(project_path: str | os.PathLike) -> Path:
    return resolve_path(project_path) / FINAL_DIR


def final_video(project_path: str | os.PathLike) -> Optional[Path]:
    """Newest regular file in the project's final/ directory, or None."""
    d = final_dir(project_path)
    if not d.is_dir():
        return None
    with os.scandir(d) as it:
        files = [d / e.name for e in it if e.is_file()]
    if not files:
        return None
    return max(files, key=lambda p: p.stat().st_mtime)


def uses_narration(project_path: str | os.PathLike) -> bool:
    """True when any scene has a non-empty read/ directory (TTS narration)."""
    for scene in list_scenes(project_path):
        read_dir = scene.path / READ_DIR
        if read_dir.is_dir() and any(read_dir.iterdir()):
            return True
    return False
