from __future__ import annotations

import json
from dataclasses import dataclass


class SkillManagerError(RuntimeError):
    pass


class UsageError(SkillManagerError):
    pass


class ConflictError(SkillManagerError):
    pass


class ResolutionError(SkillManagerError):
    pass


class OriginFormatError(ResolutionError):
    pass


class SourceMissingError(ResolutionError):
    pass


class FetchError(SkillManagerError):
    pass


@dataclass(frozen=True)
class GitHubHTTPError(FetchError):
    status_code: int
    body: str
    url: str = ""

    def __str__(self) -> str:
        target = f" for {self.url}" if self.url else ""
        return f"HTTP {self.status_code}{target}: {self.body}"


class ValidationError(SkillManagerError):
    pass


class SkillNotInstalledError(SkillManagerError):
    pass


class MissingMetadataError(SkillManagerError):
    pass


def _http_error_detail(body: str) -> str | None:
    text = body.strip()
    if not text:
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(obj, dict):
        value = obj.get("message")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return text[:200]


def format_error(err: BaseException) -> str:
    if not isinstance(err, GitHubHTTPError):
        return str(err)

    detail = _http_error_detail(err.body)
    if err.status_code in (403, 429) and detail and "rate limit" in detail.lower():
        base = f"HTTP {err.status_code} GitHub rate limit exceeded. Set GITHUB_TOKEN to raise the limit."
    elif err.status_code == 401:
        base = "HTTP 401 Unauthorized. Check the GITHUB_TOKEN value."
    elif err.status_code == 404:
        base = "HTTP 404 Not Found. Check that the repository, branch, and path exist and are visible."
    else:
        base = f"HTTP {err.status_code}"
    if err.url:
        base = f"{base} ({err.url})"
    if detail:
        return f"{base} {detail}"
    return base
