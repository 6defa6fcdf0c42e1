from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict

from goodbot.common.config import (
    LanguageSettings,
    UserConfig,
    describe_config,
    load_credentials,
)
from goodbot.common.env import Env
from goodbot.common.logging_setup import get_logger
from goodbot.common.paths import is_directory, path_exists, resolve_path
from goodbot.pipeline.orchestrator import Pipeline


log = get_logger("cli")


class UsageError(RuntimeError):
    pass


@dataclass
class Context:
    env: Env
    config: UserConfig
    pipeline: Pipeline


def _existing(raw: str) -> Path:
    p = resolve_path(raw)
    if not path_exists(p):
        raise UsageError(f"{raw}: no such file or directory")
    return p


def _existing_dir(raw: str) -> Path:
    p = _existing(raw)
    if not is_directory(p):
        raise UsageError(f"{raw} is not a directory")
    return p


def _language(ctx: Context, args: argparse.Namespace) -> LanguageSettings:
    return LanguageSettings(
        lang=getattr(args, "language", None) or ctx.config.language,
        lang_name=getattr(args, "language_name", None) or ctx.config.language_name,
    )


def cmd_record(args: argparse.Namespace, ctx: Context) -> int:
    target = _existing(args.path)
    if is_directory(target):
        project = target
    elif args.project_dir:
        write_dir = _existing_dir(args.project_dir)
        name = args.name or target.stem
        project = ctx.pipeline.setup(str(target), str(write_dir), name)
        log.info("project created at %s", project)
    else:
        raise UsageError(
            f"{args.path} is a script file, not a project directory. "
            f"Run 'good-bot-cli setup {args.path} --project-dir DIR' first, "
            f"or pass --project-dir to record."
        )

    credentials = load_credentials(ctx.config)
    return ctx.pipeline.run(
        project,
        credentials=credentials,
        language=_language(ctx, args),
        render=not args.no_render,
        gifs_only=args.gifs_only,
    )


def cmd_render(args: argparse.Namespace, ctx: Context) -> int:
    project = _existing_dir(args.path)
    report = ctx.pipeline.render_all_scenes(project)
    if report.failed:
        log.warning("%d recording(s) could not be rendered", len(report.failed))
    if args.gifs_only:
        return 0
    final = ctx.pipeline.assemble_video(project)
    log.info("final video written to %s", final)
    return 0


def cmd_setup(args: argparse.Namespace, ctx: Context) -> int:
    script = _existing(args.script)
    if is_directory(script):
        raise UsageError(f"{args.script} is a directory, expected a script file")
    write_dir = _existing_dir(args.project_dir)
    project = ctx.pipeline.setup(str(script), str(write_dir), args.name or script.stem)
    print(f"Project created at {project}")
    return 0


def cmd_update(args: argparse.Namespace, ctx: Context) -> int:
    images = list(args.images) or [ctx.env.goodbot_image, ctx.env.gif_image]
    for image in images:
        ctx.pipeline.runtime.pull(image)  # type: ignore[attr-defined]
    return 0


def cmd_echo_config(args: argparse.Namespace, ctx: Context) -> int:
    for line in describe_config(ctx.config):
        print(line)
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, Context], int]] = {
    "record": cmd_record,
    "render": cmd_render,
    "setup": cmd_setup,
    "update": cmd_update,
    "echo-config": cmd_echo_config,
}
