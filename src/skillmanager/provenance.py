from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Union

METADATA_FILENAME = ".metadata.json"
UNKNOWN_COMMIT = "unknown"


def utc_timestamp(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class GitHubRecord:
    source_url: str
    commit: str
    installed_at: str
    updated_at: str
    origin_kind: Literal["github"] = "github"

    @property
    def source(self) -> str:
        return self.source_url

    @property
    def version(self) -> str | None:
        return self.commit

    def advanced(self, version: str | None, updated_at: str) -> "GitHubRecord":
        return replace(self, commit=version or self.commit, updated_at=updated_at)


@dataclass(frozen=True)
class LocalRecord:
    source_path: str
    git_commit: str | None
    installed_at: str
    updated_at: str
    origin_kind: Literal["local"] = "local"

    @property
    def source(self) -> str:
        return self.source_path

    @property
    def version(self) -> str | None:
        return self.git_commit

    def advanced(self, version: str | None, updated_at: str) -> "LocalRecord":
        return replace(self, git_commit=version or self.git_commit, updated_at=updated_at)


ProvenanceRecord = Union[GitHubRecord, LocalRecord]


def to_dict(record: ProvenanceRecord) -> dict[str, Any]:
    if record.origin_kind == "github":
        return {
            "source_type": "github",
            "source_url": record.source_url,
            "github_commit": record.commit,
            "installed_at": record.installed_at,
            "updated_at": record.updated_at,
        }
    payload: dict[str, Any] = {
        "source_type": "local",
        "source_path": record.source_path,
    }
    if record.git_commit:
        payload["local_git_commit"] = record.git_commit
    payload["installed_at"] = record.installed_at
    payload["updated_at"] = record.updated_at
    return payload


def _str_field(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def from_dict(raw: Any) -> ProvenanceRecord | None:
    if not isinstance(raw, dict):
        return None

    installed_at = _str_field(raw, "installed_at")
    updated_at = _str_field(raw, "updated_at")
    if installed_at is None or updated_at is None:
        return None

    kind = raw.get("source_type")
    if kind == "github":
        url = _str_field(raw, "source_url")
        if url is None:
            return None
        return GitHubRecord(
            source_url=url,
            commit=_str_field(raw, "github_commit") or UNKNOWN_COMMIT,
            installed_at=installed_at,
            updated_at=updated_at,
        )
    if kind == "local":
        path = _str_field(raw, "source_path")
        if path is None:
            return None
        return LocalRecord(
            source_path=path,
            git_commit=_str_field(raw, "local_git_commit"),
            installed_at=installed_at,
            updated_at=updated_at,
        )
    return None


def read(skill_dir: Path) -> ProvenanceRecord | None:
    """Load the provenance record of ``skill_dir``. Any problem reading it means "unmanaged"."""
    meta_path = skill_dir / METADATA_FILENAME
    if not meta_path.is_file():
        return None
    try:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return from_dict(data)


def write(skill_dir: Path, record: ProvenanceRecord) -> Path:
    path = skill_dir / METADATA_FILENAME
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(to_dict(record), indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path
