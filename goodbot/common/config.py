from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from goodbot.common.paths import resolve_path


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class UserConfig:
    path: str
    found: bool
    tts_credentials: Optional[str]
    passwords_env: Optional[str]
    language: str = "en-US"
    language_name: str = "en-US-Standard-C"


@dataclass(frozen=True)
class Credentials:
    tts_file: Optional[str]
    passwords: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LanguageSettings:
    lang: str
    lang_name: str


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def _opt_path(value: Any) -> Optional[str]:
    s = str(value or "").strip()
    if not s:
        return None
    return str(resolve_path(s))


def load_user_config(cfg_path: str) -> UserConfig:
    """Read the YAML config file; a missing file yields an empty config.

    GOODBOT_TTS_CREDENTIALS / GOODBOT_PASSWORDS_ENV override the file values.
    """
    p = resolve_path(cfg_path)
    data: Dict[str, Any] = {}
    found = p.is_file()
    if found:
        data = _read_yaml(p)

    tts = os.environ.get("GOODBOT_TTS_CREDENTIALS") or data.get("ttsCredentials")
    passwords = os.environ.get("GOODBOT_PASSWORDS_ENV") or data.get("passwordsEnv")

    return UserConfig(
        path=str(p),
        found=found,
        tts_credentials=_opt_path(tts),
        passwords_env=_opt_path(passwords),
        language=str(data.get("language") or "en-US"),
        language_name=str(data.get("languageName") or "en-US-Standard-C"),
    )


def parse_passwords(passwords_path: str) -> List[str]:
    """Read a passwords env file into KEY=VALUE entries, one per non-blank line."""
    lines = Path(passwords_path).read_text(encoding="utf-8").splitlines()
    return [ln.strip() for ln in lines if ln.strip()]


def load_credentials(cfg: UserConfig) -> Credentials:
    passwords: List[str] = []
    if cfg.passwords_env:
        try:
            passwords = parse_passwords(cfg.passwords_env)
        except OSError as e:
            raise ConfigError(f"cannot read passwords file {cfg.passwords_env}: {e}") from e
    return Credentials(tts_file=cfg.tts_credentials, passwords=passwords)


def describe_config(cfg: UserConfig) -> List[str]:
    out: List[str] = []
    if cfg.found:
        out.append(f"Using config file: {cfg.path}")
    else:
        out.append(f"No configuration file found at {cfg.path}")
    if cfg.tts_credentials:
        out.append(f"Will be using TTS credentials from {cfg.tts_credentials}")
    else:
        out.append("There is no 'ttsCredentials' variable in your configuration file")
    if cfg.passwords_env:
        out.append(f"Will be using passwords from env file {cfg.passwords_env}")
    else:
        out.append("There is no 'passwordsEnv' variable in your configuration file")
    out.append(f"Narration language: {cfg.language} ({cfg.language_name})")
    return out
