from __future__ import annotations

import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Protocol

from .errors import FetchError, SourceMissingError, ValidationError
from .github import GitHubClient, GitHubRef, extract_subtree, parse_github_url
from .provenance import UNKNOWN_COMMIT, GitHubRecord, LocalRecord, ProvenanceRecord

_URL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")

GitHeadFn = Callable[[Path], "str | None"]


class Origin(Protocol):
    kind: str

    @property
    def name(self) -> str:
        ...

    @property
    def source(self) -> str:
        ...

    def describe(self) -> list[tuple[str, str]]:
        ...

    def ensure_available(self) -> None:
        ...

    def current_version(self) -> str | None:
        ...

    def fetch_into(self, staging_dir: Path) -> None:
        ...

    def new_record(self, version: str | None, now: str) -> ProvenanceRecord:
        ...


def git_head(path: Path) -> str | None:
    """Return the HEAD commit of the git checkout containing ``path``, if any."""
    try:
        proc = subprocess.run(
            ["git", "-C", str(path), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip() or None


def resolve_local_path(source: str) -> Path:
    path = Path(source).expanduser()
    if not path.exists():
        raise SourceMissingError(f"Local path does not exist: {source}")
    if not path.is_dir():
        raise ValidationError(f"Local source must be a directory containing SKILL.md: {source}")
    return path.resolve()


class GitHubOrigin:
    kind = "github"

    def __init__(self, ref: GitHubRef, client: GitHubClient) -> None:
        self.ref = ref
        self._client = client

    @property
    def name(self) -> str:
        return self.ref.name

    @property
    def source(self) -> str:
        return self.ref.url

    def describe(self) -> list[tuple[str, str]]:
        return [
            ("Repo", f"{self.ref.owner}/{self.ref.repo}"),
            ("Branch", self.ref.branch),
            ("Path", self.ref.path),
        ]

    def ensure_available(self) -> None:
        return None

    def current_version(self) -> str | None:
        return self._client.latest_commit(self.ref)

    def fetch_into(self, staging_dir: Path) -> None:
        archive = self._client.download_tarball(self.ref)
        extracted = extract_subtree(archive, self.ref.path, staging_dir)
        if extracted == 0:
            raise FetchError(
                f"Extraction produced no files for {self.ref.url}. "
                "Check that the URL, branch, and path are correct."
            )

    def new_record(self, version: str | None, now: str) -> GitHubRecord:
        return GitHubRecord(
            source_url=self.ref.url,
            commit=version or UNKNOWN_COMMIT,
            installed_at=now,
            updated_at=now,
        )


class LocalOrigin:
    kind = "local"

    def __init__(self, path: Path, *, git_head_fn: GitHeadFn = git_head) -> None:
        self.path = path
        self._git_head = git_head_fn

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def source(self) -> str:
        return str(self.path)

    def describe(self) -> list[tuple[str, str]]:
        return [("Source", str(self.path))]

    def ensure_available(self) -> None:
        if not self.path.exists():
            raise SourceMissingError(f"Source path no longer exists: {self.path}")

    def current_version(self) -> str | None:
        self.ensure_available()
        return self._git_head(self.path)

    def fetch_into(self, staging_dir: Path) -> None:
        self.ensure_available()
        if not self.path.is_dir():
            raise ValidationError(f"Local source must be a directory containing SKILL.md: {self.path}")
        shutil.copytree(self.path, staging_dir, symlinks=True, dirs_exist_ok=True)

    def new_record(self, version: str | None, now: str) -> LocalRecord:
        return LocalRecord(
            source_path=str(self.path),
            git_commit=version,
            installed_at=now,
            updated_at=now,
        )


class OriginResolver:
    """Builds origins from user-supplied sources or from stored provenance records."""

    def __init__(self, *, client: GitHubClient, git_head_fn: GitHeadFn | None = None) -> None:
        self.client = client
        self._git_head = git_head_fn or git_head

    def from_source(self, source: str) -> Origin:
        raw = source.strip()
        if _URL_RE.match(raw):
            return GitHubOrigin(parse_github_url(raw), self.client)
        return LocalOrigin(resolve_local_path(raw), git_head_fn=self._git_head)

    def from_record(self, record: ProvenanceRecord) -> Origin:
        if record.origin_kind == "github":
            return GitHubOrigin(parse_github_url(record.source_url), self.client)
        return LocalOrigin(Path(record.source_path), git_head_fn=self._git_head)
