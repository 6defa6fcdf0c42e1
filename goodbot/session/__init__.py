from goodbot.session.process_session import (
    AttachError,
    CommandSpec,
    ContainerRuntime,
    DuplexStream,
    ExitStatus,
    Mount,
    ProcessSession,
    SessionCancelled,
    SessionError,
    SessionState,
    SessionStateError,
    StartError,
    WaitError,
    WaitHandle,
)
from goodbot.session.bridge import (
    LineQueue,
    QueueClosed,
)

__all__ = [
    "AttachError",
    "CommandSpec",
    "ContainerRuntime",
    "DuplexStream",
    "ExitStatus",
    "Mount",
    "ProcessSession",
    "SessionCancelled",
    "SessionError",
    "SessionState",
    "SessionStateError",
    "StartError",
    "WaitError",
    "WaitHandle",
    "LineQueue",
    "QueueClosed",
]
