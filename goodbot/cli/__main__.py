from __future__ import annotations

import argparse
import signal
import threading
from typing import BinaryIO, List, Optional

from goodbot import __version__
from goodbot.cli.commands import COMMANDS, Context, UsageError
from goodbot.common.config import ConfigError, load_user_config
from goodbot.common.env import Env
from goodbot.common.logging_setup import get_logger, setup_logging
from goodbot.common.paths import HostEnvironmentError
from goodbot.common.profile import load_profile_env
from goodbot.pipeline.orchestrator import Pipeline, StepFailed
from goodbot.pipeline.steps import MissingCredentialsError
from goodbot.project.scenes import NotInProjectError
from goodbot.runtime.docker_cli import DockerCliRuntime, DockerError
from goodbot.session.process_session import ContainerRuntime, SessionCancelled


_FATAL = (
    StepFailed,
    MissingCredentialsError,
    ConfigError,
    DockerError,
    HostEnvironmentError,
    NotInProjectError,
    OSError,
    ValueError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="good-bot-cli",
        description="Record terminal screencasts from a script and turn them into GIFs and a video.",
    )
    parser.add_argument("--config", default=None, help="configuration file (default: $GOODBOT_CONFIG)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("record", help="record a project, render its scenes and assemble the video")
    p.add_argument("path", help="project directory (or a script file together with --project-dir)")
    p.add_argument("--no-render", action="store_true", help="only record")
    p.add_argument("--gifs-only", action="store_true", help="render GIFs but skip the final video")
    p.add_argument("-l", "--language", default=None)
    p.add_argument("-n", "--language-name", default=None)
    p.add_argument("--project-dir", default=None, help="where to set up a project from a script file")
    p.add_argument("--name", default=None, help="project name (default: script file name)")

    p = sub.add_parser("render", help="render every scene of a project and assemble the video")
    p.add_argument("path")
    p.add_argument("--gifs-only", action="store_true")

    p = sub.add_parser("setup", help="create a project directory from a script file")
    p.add_argument("script")
    p.add_argument("--project-dir", required=True)
    p.add_argument("--name", default=None)

    p = sub.add_parser("update", help="pull the container images")
    p.add_argument("images", nargs="*")

    sub.add_parser("echo-config", help="print how the configuration file was understood")
    return parser


def main(
    argv: Optional[List[str]] = None,
    *,
    runtime: Optional[ContainerRuntime] = None,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> int:
    load_profile_env()
    env = Env.load()

    args = build_parser().parse_args(argv)

    setup_logging(env, service="good-bot-cli")
    log = get_logger("cli")

    try:
        cfg = load_user_config(args.config or env.config_path)
    except (ConfigError, HostEnvironmentError) as e:
        log.error("%s", e)
        return 1

    rt: ContainerRuntime
    if runtime is None:
        docker = DockerCliRuntime(env.docker_bin)
        if args.command != "echo-config":
            try:
                docker.check_available()
            except DockerError as e:
                log.error("%s", e)
                return 1
        rt = docker
    else:
        rt = runtime

    pipeline = Pipeline(env=env, runtime=rt, stdin=stdin, stdout=stdout, stderr=stderr)
    ctx = Context(env=env, config=cfg, pipeline=pipeline)

    prev_handler = None
    in_main = threading.current_thread() is threading.main_thread()
    if in_main:
        prev_handler = signal.signal(signal.SIGTERM, lambda signum, frame: pipeline.cancel())

    try:
        return COMMANDS[args.command](args, ctx)
    except UsageError as e:
        log.error("%s", e)
        return 1
    except SessionCancelled as e:
        log.warning("%s cancelled: %s", args.command, e)
        return 130
    except _FATAL as e:
        log.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        pipeline.cancel()
        log.warning("interrupted")
        return 130
    finally:
        if in_main and prev_handler is not None:
            signal.signal(signal.SIGTERM, prev_handler)


if __name__ == "__main__":
    raise SystemExit(main())
