from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv


def load_profile_env(base_dir: Path | None = None) -> str:
    """Load env file based on GOODBOT_PROFILE.

    Order:
    - ~/.good-bot-cli/env.<profile> if exists
    - ~/.good-bot-cli/env if exists

    Variables already present in the environment win.
    """
    base = base_dir if base_dir is not None else Path.home() / ".good-bot-cli"
    profile = os.environ.get("GOODBOT_PROFILE", "").strip() or "default"
    cand = base / f"env.{profile}"
    if cand.exists():
        load_dotenv(str(cand), override=False)
        return str(cand)
    fallback = base / "env"
    if fallback.exists():
        load_dotenv(str(fallback), override=False)
        return str(fallback)
    return ""
