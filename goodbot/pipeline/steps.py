"""Container command descriptions for each pipeline step."""
from __future__ import annotations

import os
from typing import List

from goodbot.common.config import Credentials, LanguageSettings
from goodbot.common.paths import parent_dir, resolve_path
from goodbot.project.scenes import find_owning_scene, render_artifact_path
from goodbot.session.process_session import CommandSpec, Mount


CONTAINER_PROJECT_ROOT = "/project"
CONTAINER_WRITE_ROOT = "/users-cwd"
CONTAINER_CREDENTIALS_ROOT = "/credentials"
CONTAINER_DATA_ROOT = "/data"  # asciicast2gif working directory


class MissingCredentialsError(RuntimeError):
    pass


def setup_spec(script: str | os.PathLike, write_dir: str | os.PathLike, project_name: str, *, image: str) -> CommandSpec:
    script_path = resolve_path(script)
    if os.sep in project_name or not project_name.strip():
        raise ValueError(f"invalid project name: {project_name!r}")
    container_project = f"{CONTAINER_WRITE_ROOT}/{project_name}"
    return CommandSpec(
        image=image,
        args=("setup", "--project-path", container_project, f"{CONTAINER_PROJECT_ROOT}/{script_path.name}"),
        mounts=(
            Mount(source=str(script_path.parent), target=CONTAINER_PROJECT_ROOT),
            Mount(source=str(resolve_path(write_dir)), target=CONTAINER_WRITE_ROOT),
        ),
        interactive=True,
        name=f"setup:{project_name}",
    )


def record_spec(
    project: str | os.PathLike,
    *,
    credentials: Credentials,
    language: LanguageSettings,
    image: str,
    narration: bool,
) -> CommandSpec:
    project_path = resolve_path(project)
    container_project = f"{CONTAINER_PROJECT_ROOT}/{project_path.name}"

    env: List[str] = list(credentials.passwords)
    args: List[str] = ["record", container_project]
    mounts: List[Mount] = [Mount(source=str(parent_dir(project_path)), target=CONTAINER_PROJECT_ROOT)]

    if narration:
        if not credentials.tts_file:
            raise MissingCredentialsError(
                "You need a TTS credentials file to use 'read' statements in your script. "
                "Set ttsCredentials in your configuration file."
            )
        tts = resolve_path(credentials.tts_file)
        env.append(f"GOOGLE_APPLICATION_CREDENTIALS={CONTAINER_CREDENTIALS_ROOT}/{tts.name}")
        mounts.append(Mount(source=str(tts.parent), target=CONTAINER_CREDENTIALS_ROOT))
        args += ["-l", language.lang, "-n", language.lang_name]

    return CommandSpec(
        image=image,
        args=tuple(args),
        env=tuple(env),
        mounts=tuple(mounts),
        interactive=True,
        name=f"record:{project_path.name}",
    )


def render_recording_spec(recording: str | os.PathLike, *, image: str, scale: int = 1, interactive: bool = False) -> CommandSpec:
    rec = resolve_path(recording)
    scene = find_owning_scene(rec)
    artifact = render_artifact_path(rec)
    return CommandSpec(
        image=image,
        args=(f"-S{int(scale)}", rec.relative_to(scene).as_posix(), artifact.relative_to(scene).as_posix()),
        mounts=(Mount(source=str(scene), target=CONTAINER_DATA_ROOT),),
        interactive=interactive,
        name=f"render:{scene.name}/{rec.stem}",
    )


def assemble_spec(project: str | os.PathLike, *, image: str) -> CommandSpec:
    project_path = resolve_path(project)
    return CommandSpec(
        image=image,
        args=("render-video", f"{CONTAINER_PROJECT_ROOT}/{project_path.name}"),
        mounts=(Mount(source=str(parent_dir(project_path)), target=CONTAINER_PROJECT_ROOT),),
        interactive=True,
        name=f"assemble:{project_path.name}",
    )
