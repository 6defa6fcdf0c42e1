"""Terminal <-> container I/O plumbing used by ProcessSession.

Shutdown chain: local stdin EOF closes the LineQueue, the writer sees the
queue closed and closes the remote input.
"""
from __future__ import annotations

import collections
import logging
import os
import select
import threading
import time
from typing import BinaryIO, Callable, Deque, Optional

log = logging.getLogger(__name__)

_CHUNK = 4096
_POLL_SEC = 0.2
_PUT_SLICE_SEC = 0.2


class QueueClosed(Exception):
    pass


class LineQueue:
    """Bounded FIFO of input lines with an explicit close.

    ``put`` waits in slices of ``_PUT_SLICE_SEC`` while the queue is full,
    re-checking the closed flag each time, and raises QueueClosed once the
    queue is closed; ``timeout`` bounds the total wait. ``get`` returns None
    when the queue is closed and empty.
    """

    def __init__(self, maxsize: int = 256):
        self._maxsize = max(1, int(maxsize))
        self._items: Deque[bytes] = collections.deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, line: bytes, timeout: Optional[float] = None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._closed and len(self._items) >= self._maxsize:
                slice_sec = _PUT_SLICE_SEC
                if deadline is not None:
                    slice_sec = min(slice_sec, deadline - time.monotonic())
                    if slice_sec <= 0:
                        raise TimeoutError("input queue is full")
                self._cond.wait(slice_sec)
            if self._closed:
                raise QueueClosed()
            self._items.append(line)
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[bytes]:
        with self._cond:
            ok = self._cond.wait_for(lambda: self._closed or bool(self._items), timeout)
            if not ok:
                raise TimeoutError("no input line available")
            if self._items:
                item = self._items.popleft()
                self._cond.notify_all()
                return item
            return None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


def _fileno(src: BinaryIO) -> Optional[int]:
    try:
        return src.fileno()
    except (AttributeError, OSError, ValueError):
        # in-memory streams raise io.UnsupportedOperation (an OSError/ValueError)
        return None


def _strip_eol(raw: bytes) -> bytes:
    if raw.endswith(b"\n"):
        raw = raw[:-1]
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw


def read_input_lines(src: BinaryIO, queue: LineQueue, stop: threading.Event) -> None:
    """Feed ``src`` line by line into ``queue`` and close it at EOF.

    Real file descriptors are polled so ``stop`` is honoured between lines.
    """
    try:
        fd = _fileno(src)
        if fd is None:
            for raw in src:
                if stop.is_set():
                    break
                queue.put(_strip_eol(raw))
            return

        buf = b""
        pollable = True
        while not stop.is_set():
            if pollable:
                try:
                    ready, _, _ = select.select([fd], [], [], _POLL_SEC)
                except (OSError, ValueError):
                    pollable = False
                    continue
                if not ready:
                    continue
            chunk = os.read(fd, _CHUNK)
            if not chunk:
                if buf:
                    queue.put(_strip_eol(buf))
                return
            buf += chunk
            while b"\n" in buf:
                raw, buf = buf.split(b"\n", 1)
                queue.put(_strip_eol(raw))
    except QueueClosed:
        pass
    except OSError as e:
        log.warning("stopped reading local input: %s", e)
    finally:
        queue.close()


def write_input_lines(queue: LineQueue, write: Callable[[bytes], None], close_input: Callable[[], None]) -> None:
    """Drain ``queue`` into the remote input, then close the remote input."""
    try:
        while True:
            line = queue.get()
            if line is None:
                return
            write(line + b"\n")
    except (BrokenPipeError, ConnectionError, ValueError) as e:
        # remote side went away; further input has nowhere to go
        log.debug("remote input closed early: %s", e)
        queue.close()
    finally:
        try:
            close_input()
        except OSError as e:
            log.debug("closing remote input failed: %s", e)


def copy_output(src: BinaryIO, dst: BinaryIO) -> None:
    """Copy a remote output stream to a local destination until EOF."""
    read = getattr(src, "read1", None) or src.read
    try:
        while True:
            chunk = read(_CHUNK)
            if not chunk:
                return
            dst.write(chunk)
            dst.flush()
    except (OSError, ValueError) as e:
        log.debug("output copy stopped: %s", e)
