from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import provenance
from .provenance import ProvenanceRecord

# Left behind only if a replace is interrupted; never a managed skill.
BACKUP_SUFFIX = ".skillmanager-backup"


@dataclass(frozen=True)
class InstalledSkill:
    name: str
    path: Path
    record: ProvenanceRecord


def list_installed(skills_dir: Path) -> list[InstalledSkill]:
    """Snapshot of the managed skills under ``skills_dir``, sorted by name."""
    if not skills_dir.is_dir():
        return []

    out: list[InstalledSkill] = []
    for entry in sorted(skills_dir.iterdir(), key=lambda p: p.name):
        if not entry.is_dir() or entry.name.endswith(BACKUP_SUFFIX):
            continue
        record = provenance.read(entry)
        if record is None:
            continue
        out.append(InstalledSkill(name=entry.name, path=entry, record=record))
    return out
