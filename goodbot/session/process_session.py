from __future__ import annotations

import enum
import logging
import threading
from concurrent import futures
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Protocol, Tuple

from goodbot.session.bridge import LineQueue, copy_output, read_input_lines, write_input_lines

log = logging.getLogger(__name__)

_JOIN_SEC = 2.0
_WAIT_SLICE_SEC = 0.2


class SessionError(RuntimeError):
    pass


class StartError(SessionError):
    pass


class AttachError(SessionError):
    pass


class WaitError(SessionError):
    pass


class SessionCancelled(SessionError):
    pass


class SessionStateError(SessionError):
    pass


class SessionState(enum.Enum):
    CREATED = "created"
    ATTACHED = "attached"
    STARTED = "started"
    RUNNING = "running"
    EXITED = "exited"
    DRAINED = "drained"
    DISPOSED = "disposed"

    START_FAILED = "start_failed"
    ATTACH_FAILED = "attach_failed"
    WAIT_FAILED = "wait_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Mount:
    source: str
    target: str


@dataclass(frozen=True)
class CommandSpec:
    image: str
    args: Tuple[str, ...] = ()
    env: Tuple[str, ...] = ()
    mounts: Tuple[Mount, ...] = ()
    interactive: bool = True
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.image


@dataclass(frozen=True)
class ExitStatus:
    code: int

    @property
    def ok(self) -> bool:
        return self.code == 0


@dataclass
class WaitHandle:
    status: "futures.Future[int]" = field(default_factory=futures.Future)
    error: "futures.Future[BaseException]" = field(default_factory=futures.Future)


class DuplexStream(Protocol):
    stdout: BinaryIO
    stderr: BinaryIO

    def write_input(self, data: bytes) -> None: ...

    def close_input(self) -> None: ...

    def close(self) -> None: ...


class ContainerRuntime(Protocol):
    def create(self, spec: CommandSpec) -> str: ...

    def attach(self, container_id: str) -> DuplexStream: ...

    def start(self, container_id: str, stream: DuplexStream) -> None: ...

    def wait(self, container_id: str) -> WaitHandle: ...

    def logs(self, container_id: str) -> Tuple[bytes, bytes]: ...

    def remove(self, container_id: str) -> None: ...


class ProcessSession:
    """One external, attachable unit of work, bridged to the local terminal.

    Lifecycle: open -> attach -> start -> bridge -> wait_for_exit ->
    drain_logs -> dispose. ``run`` performs all of it. Sessions are single
    use; nothing here is shared between pipeline steps.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        spec: CommandSpec,
        *,
        stdin: Optional[BinaryIO],
        stdout: BinaryIO,
        stderr: BinaryIO,
        queue_size: int = 256,
        wait_timeout: Optional[float] = None,
        remove_on_dispose: bool = True,
    ):
        self.runtime = runtime
        self.spec = spec
        self.history: List[SessionState] = []
        self.container_id: Optional[str] = None

        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self._queue = LineQueue(queue_size)
        self._stop_input = threading.Event()
        self._cancelled = threading.Event()
        self._wait_timeout = wait_timeout if wait_timeout and wait_timeout > 0 else None
        self._remove_on_dispose = remove_on_dispose

        self._stream: Optional[DuplexStream] = None
        self._threads: List[threading.Thread] = []
        self._output_threads: List[threading.Thread] = []
        self._logs_drained = False

    @property
    def state(self) -> Optional[SessionState]:
        return self.history[-1] if self.history else None

    @state.setter
    def state(self, value: SessionState) -> None:
        self.history.append(value)

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            want = ", ".join(s.value for s in states)
            have = self.state.value if self.state else "new"
            raise SessionStateError(f"{self.spec.label}: session is {have}, expected {want}")

    def open(self) -> str:
        if self.state is not None:
            raise SessionStateError(f"{self.spec.label}: session already opened")
        try:
            self.container_id = self.runtime.create(self.spec)
        except Exception as e:
            self.state = SessionState.START_FAILED
            if isinstance(e, StartError):
                raise
            raise StartError(f"{self.spec.label}: create failed: {e}") from e
        self.state = SessionState.CREATED
        log.debug("session %s created container=%s", self.spec.label, self.container_id)
        return self.container_id

    def attach(self) -> DuplexStream:
        self._require(SessionState.CREATED)
        assert self.container_id is not None
        try:
            self._stream = self.runtime.attach(self.container_id)
        except Exception as e:
            self.state = SessionState.ATTACH_FAILED
            if isinstance(e, AttachError):
                raise
            raise AttachError(f"{self.spec.label}: attach failed: {e}") from e
        self.state = SessionState.ATTACHED
        return self._stream

    def start(self) -> None:
        self._require(SessionState.ATTACHED)
        assert self.container_id is not None and self._stream is not None
        try:
            self.runtime.start(self.container_id, self._stream)
        except Exception as e:
            self.state = SessionState.START_FAILED
            if isinstance(e, StartError):
                raise
            raise StartError(f"{self.spec.label}: start failed: {e}") from e
        self.state = SessionState.STARTED

    def _spawn(self, name: str, target, *args) -> threading.Thread:
        t = threading.Thread(target=target, args=args, name=f"{self.spec.label}:{name}", daemon=True)
        t.start()
        self._threads.append(t)
        return t

    def bridge(self) -> None:
        """Start output copying and input forwarding; all run before waiting."""
        self._require(SessionState.STARTED)
        stream = self._stream
        assert stream is not None

        self._output_threads = [
            self._spawn("stdout", copy_output, stream.stdout, self._stdout),
            self._spawn("stderr", copy_output, stream.stderr, self._stderr),
        ]

        if self.spec.interactive and self._stdin is not None:
            self._spawn("stdin-read", read_input_lines, self._stdin, self._queue, self._stop_input)
        else:
            self._queue.close()
        self._spawn("stdin-write", write_input_lines, self._queue, stream.write_input, stream.close_input)

        self.state = SessionState.RUNNING

    def wait_for_exit(self) -> ExitStatus:
        """Block until the runtime reports exit or an error.

        An error that has been reported wins over a status, even when both
        arrived.
        """
        self._require(SessionState.RUNNING)
        assert self.container_id is not None
        try:
            handle = self.runtime.wait(self.container_id)
        except Exception as e:
            self.state = SessionState.WAIT_FAILED
            raise WaitError(f"{self.spec.label}: wait failed: {e}") from e

        waited = 0.0
        pending = {handle.status, handle.error}
        while True:
            if self._cancelled.is_set():
                self.state = SessionState.CANCELLED
                raise SessionCancelled(f"{self.spec.label}: cancelled")
            futures.wait(pending, timeout=_WAIT_SLICE_SEC, return_when=futures.FIRST_COMPLETED)

            err = self._reported_error(handle)
            if err is not None:
                self.state = SessionState.WAIT_FAILED
                raise WaitError(f"{self.spec.label}: {err}") from err
            if handle.status.done():
                break
            if handle.error.done():
                # error channel resolved without an error; keep waiting on the status
                pending.discard(handle.error)

            waited += _WAIT_SLICE_SEC
            if self._wait_timeout is not None and waited >= self._wait_timeout:
                self.state = SessionState.WAIT_FAILED
                raise WaitError(f"{self.spec.label}: no exit after {self._wait_timeout:.0f}s")

        try:
            code = int(handle.status.result())
        except Exception as e:
            self.state = SessionState.WAIT_FAILED
            raise WaitError(f"{self.spec.label}: {e}") from e

        self.state = SessionState.EXITED
        log.info("session %s exited status=%d", self.spec.label, code)
        return ExitStatus(code)

    @staticmethod
    def _reported_error(handle: WaitHandle) -> Optional[BaseException]:
        if not handle.error.done():
            return None
        if handle.error.cancelled():
            return None
        exc = handle.error.exception()
        if exc is not None:
            return exc
        return handle.error.result()

    def drain_logs(self) -> None:
        """Emit the collaborator's accumulated logs, exactly once."""
        self._require(SessionState.EXITED)
        assert self.container_id is not None

        # live output first, so it is not interleaved with the log dump
        for t in self._output_threads:
            t.join(timeout=_JOIN_SEC)

        if not self._logs_drained:
            self._logs_drained = True
            try:
                out, err = self.runtime.logs(self.container_id)
            except Exception as e:
                log.warning("session %s: cannot fetch logs: %s", self.spec.label, e)
            else:
                for data, dst in ((out, self._stdout), (err, self._stderr)):
                    if data:
                        dst.write(data)
                        dst.flush()
        self.state = SessionState.DRAINED

    def cancel(self) -> None:
        """Abandon the session: stop input and make wait_for_exit return."""
        self._cancelled.set()
        self._stop_input.set()
        self._queue.close()

    def dispose(self) -> None:
        if self.state is SessionState.DISPOSED:
            return
        self._stop_input.set()
        self._queue.close()
        for t in self._threads:
            t.join(timeout=_JOIN_SEC)
            if t.is_alive():
                log.debug("session %s: thread %s still running", self.spec.label, t.name)
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                log.debug("session %s: closing stream failed: %s", self.spec.label, e)
        if self.container_id and self._remove_on_dispose:
            try:
                self.runtime.remove(self.container_id)
            except Exception as e:
                log.warning("session %s: cannot remove container %s: %s", self.spec.label, self.container_id, e)
        self.state = SessionState.DISPOSED

    def run(self) -> ExitStatus:
        try:
            self.open()
            self.attach()
            self.start()
            self.bridge()
            status = self.wait_for_exit()
            self.drain_logs()
            return status
        finally:
            self.dispose()
