from ._version import __version__
from .errors import SkillManagerError
from .github import GitHubClient, GitHubRef, parse_github_url
from .origins import GitHubOrigin, LocalOrigin, OriginResolver
from .provenance import GitHubRecord, LocalRecord, ProvenanceRecord
from .registry import InstalledSkill, list_installed
from .sync import SyncEngine, SyncResult, SyncStatus

__all__ = [
    "GitHubClient",
    "GitHubOrigin",
    "GitHubRecord",
    "GitHubRef",
    "InstalledSkill",
    "LocalOrigin",
    "LocalRecord",
    "OriginResolver",
    "ProvenanceRecord",
    "SkillManagerError",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "__version__",
    "list_installed",
    "parse_github_url",
]
