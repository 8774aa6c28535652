from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

DEFAULT_SKILLS_DIR = "~/.claude/skills"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 60.0


@dataclass(frozen=True)
class Config:
    skills_dir: str | None = None
    github_token: str | None = None
    github_api_url: str = DEFAULT_GITHUB_API_URL
    timeout_s: float = DEFAULT_TIMEOUT_S


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLMANAGER_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skillmanager") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def merge_config(
    base: Config,
    *,
    skills_dir: str | None = None,
    timeout_s: float | None = None,
) -> Config:
    """Apply environment and command-line overrides (CLI > env > file)."""
    skills = skills_dir or os.getenv("SKILLMANAGER_SKILLS_DIR") or base.skills_dir
    token = os.getenv("GITHUB_TOKEN") or base.github_token
    api_url = os.getenv("SKILLMANAGER_GITHUB_API_URL") or base.github_api_url

    timeout = timeout_s if timeout_s is not None else (os.getenv("SKILLMANAGER_TIMEOUT_S") or base.timeout_s)
    try:
        timeout_f = float(timeout)
    except (TypeError, ValueError):
        timeout_f = base.timeout_s

    return Config(
        skills_dir=skills,
        github_token=token,
        github_api_url=api_url,
        timeout_s=timeout_f,
    )


def resolve_skills_dir(cfg: Config) -> Path:
    return Path(cfg.skills_dir or DEFAULT_SKILLS_DIR).expanduser().resolve()
