from goodbot.runtime.docker_cli import AttachedStream, DockerCliRuntime, DockerError

__all__ = ["AttachedStream", "DockerCliRuntime", "DockerError"]
