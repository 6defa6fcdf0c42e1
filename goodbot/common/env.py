import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Env:
    # container images
    goodbot_image: str
    gif_image: str
    docker_bin: str

    # user files
    config_path: str
    log_dir: str

    # recording normalization (columns x rows)
    rec_width: int
    rec_height: int
    gif_scale: int

    # runtime knobs
    render_workers: int
    pull_images: int          # 1/0
    keep_containers: int      # 1/0
    wait_timeout_sec: int     # 0 = wait forever
    input_queue_size: int

    @staticmethod
    def load() -> "Env":
        return Env(
            goodbot_image=os.environ.get("GOODBOT_IMAGE", "trickytroll/good-bot:latest"),
            gif_image=os.environ.get("GOODBOT_GIF_IMAGE", "asciinema/asciicast2gif"),
            docker_bin=os.environ.get("GOODBOT_DOCKER_BIN", "docker"),

            config_path=os.environ.get("GOODBOT_CONFIG", "~/.good-bot-cli.yaml"),
            log_dir=os.environ.get("GOODBOT_LOG_DIR", "~/.good-bot-cli/logs"),

            rec_width=int(os.environ.get("GOODBOT_REC_WIDTH", "80")),
            rec_height=int(os.environ.get("GOODBOT_REC_HEIGHT", "24")),
            gif_scale=int(os.environ.get("GOODBOT_GIF_SCALE", "1")),

            render_workers=max(1, int(os.environ.get("GOODBOT_RENDER_WORKERS", "1"))),
            pull_images=int(os.environ.get("GOODBOT_PULL_IMAGES", "1")),
            keep_containers=int(os.environ.get("GOODBOT_KEEP_CONTAINERS", "0")),
            wait_timeout_sec=int(os.environ.get("GOODBOT_WAIT_TIMEOUT_SEC", "0")),
            input_queue_size=int(os.environ.get("GOODBOT_INPUT_QUEUE_SIZE", "256")),
        )
