from __future__ import annotations

import io
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from goodbot.common.env import Env
from goodbot.session.process_session import CommandSpec, WaitHandle


@contextmanager
def temp_env() -> Iterator[Tuple[tempfile.TemporaryDirectory, Env]]:
    """Isolated HOME/config/log dir; returns (tempdir, Env).

    The original environment is restored on exit.
    """
    td = tempfile.TemporaryDirectory()

    old = os.environ.copy()
    try:
        root = Path(td.name)
        os.environ["HOME"] = str(root / "home")
        (root / "home").mkdir()
        os.environ["GOODBOT_CONFIG"] = str(root / "config.yaml")
        os.environ["GOODBOT_LOG_DIR"] = str(root / "logs")
        os.environ["GOODBOT_RENDER_WORKERS"] = "1"
        os.environ["GOODBOT_PULL_IMAGES"] = "1"
        os.environ["GOODBOT_KEEP_CONTAINERS"] = "0"
        os.environ["GOODBOT_WAIT_TIMEOUT_SEC"] = "10"
        for k in ("GOODBOT_PROFILE", "GOODBOT_TTS_CREDENTIALS", "GOODBOT_PASSWORDS_ENV", "LOG_LEVEL"):
            os.environ.pop(k, None)

        env = Env.load()
        yield td, env
    finally:
        os.environ.clear()
        os.environ.update(old)
        td.cleanup()


def cast_header(width: int = 120, height: int = 40) -> Dict[str, object]:
    return {
        "version": 2,
        "width": width,
        "height": height,
        "timestamp": 1600000000,
        "env": {"SHELL": "/bin/bash", "TERM": "xterm-256color"},
    }


def write_cast(path: Path, *, width: int = 120, height: int = 40, events: Optional[Iterable[list]] = None) -> bytes:
    """Write an asciicast v2 file and return its bytes."""
    evs = list(events) if events is not None else [[0.1, "o", "$ ls\r\n"], [0.5, "o", "README.md\r\n"]]
    lines = [json.dumps(cast_header(width, height))] + [json.dumps(e) for e in evs]
    data = ("\n".join(lines) + "\n").encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return data


def build_project(root: Path, scenes: Dict[str, Optional[List[str]]], *, name: str = "demo", narration: bool = False) -> Path:
    """Create a project; a scene mapped to None gets no asciicasts/ directory."""
    project = root / name
    project.mkdir(parents=True, exist_ok=True)
    for scene, casts in scenes.items():
        sdir = project / scene
        sdir.mkdir()
        if casts is None:
            continue
        (sdir / "asciicasts").mkdir()
        for c in casts:
            write_cast(sdir / "asciicasts" / c)
    if narration:
        first = sorted(scenes)[0]
        read = project / first / "read"
        read.mkdir(exist_ok=True)
        (read / "intro.txt").write_text("Hello there", encoding="utf-8")
    return project


def mount_source(spec: CommandSpec, target: str) -> Optional[str]:
    for m in spec.mounts:
        if m.target == target:
            return m.source
    return None


def produce_video(spec: CommandSpec) -> None:
    """on_start hook: behave like render-video and write <project>/final/<name>.mp4."""
    if not spec.args or spec.args[0] != "render-video":
        return
    name = spec.args[1].rsplit("/", 1)[-1]
    final = Path(mount_source(spec, "/project")) / name / "final"
    final.mkdir(parents=True, exist_ok=True)
    (final / f"{name}.mp4").write_bytes(b"mp4")


def produce_artifacts(spec: CommandSpec) -> None:
    produce_gif(spec)
    produce_video(spec)


def produce_gif(spec: CommandSpec) -> None:
    """on_start hook: behave like asciicast2gif and write the requested GIF."""
    src = mount_source(spec, "/data")
    if src is None or not spec.args or not spec.args[-1].endswith(".gif"):
        return
    out = Path(src) / spec.args[-1]
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(b"GIF89a")


class FakeStream:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b""):
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self.received: List[bytes] = []
        self.input_closed = threading.Event()
        self.closed = False

    def write_input(self, data: bytes) -> None:
        self.received.append(data)

    def close_input(self) -> None:
        self.input_closed.set()

    def close(self) -> None:
        self.closed = True


Outcome = Union[None, BaseException, Callable[[CommandSpec], Optional[BaseException]]]


def _outcome(value: Outcome, spec: CommandSpec) -> Optional[BaseException]:
    if value is None or isinstance(value, BaseException):
        return value
    return value(spec)


class FakeRuntime:
    """In-memory ContainerRuntime.

    A container "exits" once its input is closed; ``exit_code`` may be an int
    or a function of the CommandSpec. ``hang`` keeps wait unresolved.
    """

    def __init__(
        self,
        *,
        exit_code: Union[int, Callable[[CommandSpec], int]] = 0,
        on_start: Optional[Callable[[CommandSpec], None]] = None,
        create_error: Outcome = None,
        start_error: Outcome = None,
        wait_error: Optional[BaseException] = None,
        error_with_status: bool = False,
        error_resolves_none: bool = False,
        hang: bool = False,
        output: bytes = b"",
        logs: Tuple[bytes, bytes] = (b"", b""),
    ):
        self.exit_code = exit_code
        self.on_start = on_start
        self.create_error = create_error
        self.start_error = start_error
        self.wait_error = wait_error
        self.error_with_status = error_with_status
        self.error_resolves_none = error_resolves_none
        self.hang = hang
        self.output = output
        self.log_data = logs

        self._lock = threading.Lock()
        self.calls: List[Tuple[str, str]] = []
        self.specs: Dict[str, CommandSpec] = {}
        self.streams: Dict[str, FakeStream] = {}
        self.pulled: List[str] = []
        self.removed: List[str] = []

    def _record(self, op: str, cid: str) -> None:
        with self._lock:
            self.calls.append((op, cid))

    def ops(self, cid: str) -> List[str]:
        return [op for op, c in self.calls if c == cid]

    def created_specs(self) -> List[CommandSpec]:
        return list(self.specs.values())

    def pull(self, image: str) -> None:
        self.pulled.append(image)

    def create(self, spec: CommandSpec) -> str:
        with self._lock:
            cid = f"c{len(self.specs) + 1}"
            self.specs[cid] = spec
        self._record("create", cid)
        err = _outcome(self.create_error, spec)
        if err is not None:
            with self._lock:
                del self.specs[cid]
            raise err
        return cid

    def attach(self, container_id: str) -> FakeStream:
        self._record("attach", container_id)
        stream = FakeStream(stdout=self.output)
        self.streams[container_id] = stream
        return stream

    def start(self, container_id: str, stream: FakeStream) -> None:
        self._record("start", container_id)
        spec = self.specs[container_id]
        err = _outcome(self.start_error, spec)
        if err is not None:
            raise err
        if self.on_start is not None:
            self.on_start(spec)

    def wait(self, container_id: str) -> WaitHandle:
        self._record("wait", container_id)
        handle = WaitHandle()
        spec = self.specs[container_id]
        code = self.exit_code(spec) if callable(self.exit_code) else self.exit_code

        if self.wait_error is not None:
            if self.error_with_status:
                handle.status.set_result(code)
            handle.error.set_exception(self.wait_error)
            return handle
        if self.error_resolves_none:
            handle.error.set_result(None)
        if self.hang:
            return handle

        stream = self.streams[container_id]

        def _exit() -> None:
            stream.input_closed.wait(5)
            handle.status.set_result(code)

        threading.Thread(target=_exit, daemon=True).start()
        return handle

    def logs(self, container_id: str) -> Tuple[bytes, bytes]:
        self._record("logs", container_id)
        return self.log_data

    def remove(self, container_id: str) -> None:
        self._record("remove", container_id)
        self.removed.append(container_id)
