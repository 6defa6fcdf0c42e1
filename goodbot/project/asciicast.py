from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Tuple

log = logging.getLogger(__name__)


class RecordingError(ValueError):
    pass


class EmptyRecordingError(RecordingError):
    pass


class MalformedMetadataError(RecordingError):
    pass


def _split_header(data: bytes) -> Tuple[bytes, bytes, bytes]:
    """Return (header, header_terminator, rest) without touching ``rest``."""
    nl = data.find(b"\n")
    if nl < 0:
        line, rest, term = data, b"", b""
    else:
        line, rest, term = data[:nl], data[nl + 1:], b"\n"
    if line.endswith(b"\r"):
        line, term = line[:-1], b"\r" + term
    return line, term, rest


def _parse_header(line: bytes, path: Path) -> Dict[str, Any]:
    try:
        header = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMetadataError(f"{path}: first line is not valid JSON: {e}") from e
    if not isinstance(header, dict):
        raise MalformedMetadataError(f"{path}: first line is not a JSON object")
    return header


def read_header(recording: str | os.PathLike) -> Dict[str, Any]:
    p = Path(recording)
    data = p.read_bytes()
    if not data:
        raise EmptyRecordingError(f"{p}: recording is empty")
    line, _, _ = _split_header(data)
    return _parse_header(line, p)


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def normalize(recording: str | os.PathLike, *, width: int, height: int) -> Dict[str, Any]:
    """Force the terminal size stored in an asciicast header.

    Only ``width`` and ``height`` of line 0 change; every following byte is
    written back as read. The file is swapped in atomically, so a failure
    leaves the original recording intact.
    """
    if int(width) <= 0 or int(height) <= 0:
        raise ValueError(f"terminal size must be positive, got {width}x{height}")

    p = Path(recording)
    data = p.read_bytes()
    if not data:
        raise EmptyRecordingError(f"{p}: recording is empty")

    line, term, rest = _split_header(data)
    header = _parse_header(line, p)
    header["width"] = int(width)
    header["height"] = int(height)

    new_line = json.dumps(header, ensure_ascii=False).encode("utf-8")
    if new_line == line:
        return header

    _atomic_write(p, new_line + term + rest)
    log.debug("normalized %s to %dx%d", p, width, height)
    return header
