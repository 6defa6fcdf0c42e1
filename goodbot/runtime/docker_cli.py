from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from typing import BinaryIO, Dict, List, Optional, Tuple

from goodbot.session.process_session import (
    AttachError,
    CommandSpec,
    StartError,
    WaitHandle,
)

log = logging.getLogger(__name__)


class DockerError(RuntimeError):
    pass


def run(cmd: List[str], *, env: Optional[Dict[str, str]] = None) -> Tuple[int, str, str]:
    p = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, env=env)
    out, err = p.communicate()
    return p.returncode, out, err


class AttachedStream:
    """Pipes of a ``docker start --attach`` client, bound once the container starts."""

    def __init__(self, container_id: str, *, interactive: bool):
        self.container_id = container_id
        self.interactive = interactive
        self.proc: Optional[subprocess.Popen] = None
        self._input_lock = threading.Lock()

    def _bound(self) -> subprocess.Popen:
        if self.proc is None:
            raise AttachError(f"stream for {self.container_id} used before start")
        return self.proc

    @property
    def stdout(self) -> BinaryIO:
        return self._bound().stdout  # type: ignore[return-value]

    @property
    def stderr(self) -> BinaryIO:
        return self._bound().stderr  # type: ignore[return-value]

    def write_input(self, data: bytes) -> None:
        stdin = self._bound().stdin
        if stdin is None:
            return
        with self._input_lock:
            stdin.write(data)
            stdin.flush()

    def close_input(self) -> None:
        stdin = self._bound().stdin
        if stdin is None:
            return
        with self._input_lock:
            if not stdin.closed:
                stdin.close()

    def close(self) -> None:
        p = self.proc
        if p is None:
            return
        if p.poll() is None:
            # Only the local client is stopped; the container keeps its own lifecycle.
            p.terminate()
            try:
                p.wait(timeout=5)
            except subprocess.TimeoutExpired:
                p.kill()
                p.wait()
        for f in (p.stdin, p.stdout, p.stderr):
            if f is not None and not f.closed:
                f.close()


class DockerCliRuntime:
    """Container runtime backed by the ``docker`` command line client."""

    def __init__(self, docker_bin: str = "docker"):
        self.docker_bin = docker_bin
        self._interactive: Dict[str, bool] = {}

    def check_available(self) -> str:
        found = shutil.which(self.docker_bin)
        if not found:
            raise DockerError(f"{self.docker_bin} executable not found on PATH")
        return found

    def pull(self, image: str) -> None:
        log.info("pulling image %s", image)
        try:
            code = subprocess.Popen([self.docker_bin, "pull", image], stdout=None, stderr=None).wait()
        except OSError as e:
            raise DockerError(f"cannot run {self.docker_bin}: {e}") from e
        if code != 0:
            raise DockerError(f"docker pull {image} exited {code}")

    def create_command(self, spec: CommandSpec) -> Tuple[List[str], Dict[str, str]]:
        """Build the ``docker create`` argv; env values travel in the child env, not argv."""
        cmd = [self.docker_bin, "create"]
        if spec.interactive:
            cmd.append("--interactive")
        child_env = os.environ.copy()
        for entry in spec.env:
            key, sep, value = entry.partition("=")
            if sep and key:
                child_env[key] = value
                cmd += ["--env", key]
            else:
                cmd += ["--env", entry]
        for m in spec.mounts:
            cmd += ["--mount", f"type=bind,source={m.source},target={m.target}"]
        cmd.append(spec.image)
        cmd += list(spec.args)
        return cmd, child_env

    def create(self, spec: CommandSpec) -> str:
        cmd, child_env = self.create_command(spec)
        log.debug("CMD: %s", " ".join(cmd))
        try:
            code, out, err = run(cmd, env=child_env)
        except OSError as e:
            raise StartError(f"cannot run {self.docker_bin}: {e}") from e
        if code != 0:
            raise StartError(f"docker create failed: {err.strip()}")
        container_id = out.strip().splitlines()[-1] if out.strip() else ""
        if not container_id:
            raise StartError("docker create returned no container id")
        self._interactive[container_id] = spec.interactive
        return container_id

    def attach(self, container_id: str) -> AttachedStream:
        return AttachedStream(container_id, interactive=self._interactive.get(container_id, True))

    def start(self, container_id: str, stream: AttachedStream) -> None:
        cmd = [self.docker_bin, "start", "--attach"]
        if stream.interactive:
            cmd.append("--interactive")
        cmd.append(container_id)
        try:
            stream.proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if stream.interactive else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise StartError(f"cannot run {self.docker_bin}: {e}") from e

    def wait(self, container_id: str) -> WaitHandle:
        handle = WaitHandle()

        def _wait() -> None:
            try:
                code, out, err = run([self.docker_bin, "wait", container_id])
            except OSError as e:
                handle.error.set_exception(DockerError(f"cannot run {self.docker_bin}: {e}"))
                return
            if code != 0:
                handle.error.set_exception(DockerError(f"docker wait failed: {err.strip()}"))
                return
            try:
                handle.status.set_result(int(out.strip().splitlines()[-1]))
            except (ValueError, IndexError):
                handle.error.set_exception(DockerError(f"unexpected docker wait output: {out!r}"))

        threading.Thread(target=_wait, name=f"wait:{container_id[:12]}", daemon=True).start()
        return handle

    def logs(self, container_id: str) -> Tuple[bytes, bytes]:
        p = subprocess.Popen([self.docker_bin, "logs", container_id], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        out, err = p.communicate()
        if p.returncode != 0:
            raise DockerError(f"docker logs failed: {err.decode('utf-8', 'replace').strip()}")
        return out, err

    def remove(self, container_id: str) -> None:
        self._interactive.pop(container_id, None)
        code, _, err = run([self.docker_bin, "rm", container_id])
        if code != 0:
            raise DockerError(f"docker rm failed: {err.strip()}")
