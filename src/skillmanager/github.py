from __future__ import annotations

import gzip
import io
import os
import re
import shutil
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

import httpx

from ._version import __version__
from .config import DEFAULT_GITHUB_API_URL
from .errors import FetchError, GitHubHTTPError, OriginFormatError

GITHUB_WEB_URL = "https://github.com"
EXPECTED_URL_SHAPE = "https://github.com/<owner>/<repo>/tree/<branch>/<path/to/skill>"

_TREE_URL_RE = re.compile(r"^https://github\.com/([^/]+)/([^/]+)/tree/([^/]+)/(.+)$")


@dataclass(frozen=True)
class GitHubRef:
    owner: str
    repo: str
    branch: str
    path: str

    @property
    def url(self) -> str:
        return f"{GITHUB_WEB_URL}/{self.owner}/{self.repo}/tree/{self.branch}/{self.path}"

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def tarball_url(self) -> str:
        return f"{GITHUB_WEB_URL}/{self.owner}/{self.repo}/archive/refs/heads/{self.branch}.tar.gz"


def parse_github_url(url: str) -> GitHubRef:
    cleaned = url.strip().rstrip("/")
    m = _TREE_URL_RE.match(cleaned)
    if not m:
        raise OriginFormatError(f"Invalid GitHub URL {url!r}. Expected: {EXPECTED_URL_SHAPE}")

    segments = [s for s in m.group(4).split("/") if s]
    if not segments or any(s in (".", "..") for s in segments):
        raise OriginFormatError(f"Invalid GitHub URL {url!r}. Expected: {EXPECTED_URL_SHAPE}")
    return GitHubRef(owner=m.group(1), repo=m.group(2), branch=m.group(3), path="/".join(segments))


class GitHubClient:
    """
    Thin wrapper around the GitHub REST API and archive downloads.

    Only two calls are needed: the most recent commit touching a subpath, and the branch tarball.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        api_url: str = DEFAULT_GITHUB_API_URL,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get(self, url: str, *, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> httpx.Response:
        req_headers = {"User-Agent": f"skillmanager/{__version__}"}
        if headers:
            req_headers.update(headers)
        try:
            resp = self._http.get(url, params=params, headers=req_headers)
        except httpx.HTTPError as e:
            raise FetchError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise GitHubHTTPError(resp.status_code, resp.text, url)
        return resp

    def latest_commit(self, ref: GitHubRef) -> str | None:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        resp = self._get(
            f"{self.api_url}/repos/{ref.owner}/{ref.repo}/commits",
            params={"sha": ref.branch, "path": ref.path, "per_page": 1},
            headers=headers,
        )
        try:
            commits = resp.json()
        except ValueError as e:
            raise FetchError(f"GitHub API returned invalid JSON: {e}") from e
        if not isinstance(commits, list) or not commits:
            return None
        sha = commits[0].get("sha") if isinstance(commits[0], dict) else None
        if not isinstance(sha, str) or not sha.strip():
            return None
        return sha.strip()

    def download_tarball(self, ref: GitHubRef) -> bytes:
        return self._get(ref.tarball_url).content


def _member_target(name: str, subpath: tuple[str, ...]) -> tuple[str, ...] | None:
    parts = tuple(p for p in PurePosixPath(name).parts if p not in ("", "."))
    # parts[0] is the synthetic "<repo>-<branch>" directory GitHub adds.
    if len(parts) <= len(subpath) or parts[1 : len(subpath) + 1] != subpath:
        return None
    rest = parts[len(subpath) + 1 :]
    if any(p == ".." for p in rest):
        raise FetchError(f"Archive contains an invalid path entry: {name!r}")
    return rest


def _inside(path: Path, base: Path) -> bool:
    return path == base or str(path).startswith(str(base) + os.sep)


def _extract_symlink(member: tarfile.TarInfo, rest: tuple[str, ...], base: Path) -> None:
    parent = base.joinpath(*rest[:-1]).resolve()
    if not _inside(parent, base):
        raise FetchError(f"Archive contains an invalid path entry: {member.name!r}")

    link = parent / rest[-1]
    # Links may only point at something inside the extracted subtree.
    if PurePosixPath(member.linkname).is_absolute() or not _inside((parent / member.linkname).resolve(), base):
        raise FetchError(f"Archive contains a link leaving the skill directory: {member.name!r} -> {member.linkname!r}")

    parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.is_file():
        link.unlink()
    link.symlink_to(member.linkname)


def extract_subtree(archive: bytes, subpath: str, dest: Path) -> int:
    """
    Extract the members under ``<top>/<subpath>/`` of a gzipped tarball into ``dest``.

    The archive's top-level directory and the subpath segments are stripped, so ``dest``
    ends up holding the subtree's own contents. Regular files, directories and symlinks
    that stay inside the subtree are written; a symlink pointing outside it is an error.
    Hard links and device entries are not written. Returns the number of entries extracted.
    """
    wanted = tuple(p for p in subpath.split("/") if p)
    dest.mkdir(parents=True, exist_ok=True)
    base = dest.resolve()
    count = 0

    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tf:
            for member in tf:
                if member.name.startswith("/"):
                    raise FetchError(f"Archive contains an absolute path entry: {member.name!r}")
                rest = _member_target(member.name, wanted)
                if not rest:
                    continue

                if member.issym():
                    _extract_symlink(member, rest, base)
                    count += 1
                    continue
                if not (member.isfile() or member.isdir()):
                    continue

                target = base.joinpath(*rest).resolve()
                if not _inside(target, base):
                    raise FetchError(f"Archive contains an invalid path entry: {member.name!r}")

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    count += 1
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                src = tf.extractfile(member)
                if src is None:
                    continue
                with src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)
                if member.mode & 0o111:
                    target.chmod(0o755)
                count += 1
    except (tarfile.TarError, gzip.BadGzipFile, zlib.error, EOFError) as e:
        raise FetchError(f"Failed to extract tarball: {e}") from e

    return count
