from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable

from . import provenance
from .errors import (
    ConflictError,
    MissingMetadataError,
    SkillManagerError,
    SkillNotInstalledError,
    UsageError,
    ValidationError,
    format_error,
)
from .origins import Origin, OriginResolver
from .provenance import ProvenanceRecord, utc_timestamp
from .registry import BACKUP_SUFFIX, list_installed

MANIFEST_FILENAME = "SKILL.md"


class SyncStatus(str, Enum):
    INSTALLED = "installed"
    UPDATED = "updated"
    NO_CHANGE = "unchanged"
    DRY_RUN = "dry-run"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncResult:
    name: str
    status: SyncStatus
    path: Path
    messages: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    record: ProvenanceRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not SyncStatus.FAILED


def validate_skill_dir(path: Path) -> None:
    if not (path / MANIFEST_FILENAME).is_file():
        raise ValidationError(
            f"No {MANIFEST_FILENAME} found in '{path}'. This does not appear to be a valid skill directory."
        )


def validate_skill_name(name: str) -> str:
    cleaned = name.strip()
    if (
        not cleaned
        or cleaned in (".", "..")
        or "/" in cleaned
        or "\\" in cleaned
        or cleaned.endswith(BACKUP_SUFFIX)
    ):
        raise UsageError(f"Invalid skill name {name!r}. Expected a single directory name.")
    return cleaned


def _short(version: str | None) -> str:
    return version[:12] if version else "unknown"


def _exists(path: Path) -> bool:
    return path.exists() or path.is_symlink()


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class SyncEngine:
    """
    Installs, updates and removes skills under ``skills_dir``.

    Content is always fetched into a temporary staging directory and validated before the
    installed copy is touched. The replace itself keeps the previous copy as a sibling backup
    until the new content and its provenance record are in place, and restores it on failure.
    """

    def __init__(
        self,
        *,
        skills_dir: Path,
        resolver: OriginResolver,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self.skills_dir = skills_dir
        self.resolver = resolver
        self._clock = clock or utc_timestamp

    def install(self, source: str, *, force: bool = False, dry_run: bool = False) -> SyncResult:
        origin = self.resolver.from_source(source)
        name = validate_skill_name(origin.name)
        dest = self.skills_dir / name
        messages = [f"{label}: {value}" for label, value in origin.describe()]

        existing: ProvenanceRecord | None = None
        if _exists(dest):
            if not force:
                raise ConflictError(f"Skill '{name}' already exists at {dest}. Use --force to overwrite.")
            existing = provenance.read(dest)
            messages.append(f"{'Would replace' if dry_run else 'Replacing'} existing skill '{name}'")

        if dry_run:
            messages.append(f"Would install skill '{name}' to {dest}")
            return SyncResult(name=name, status=SyncStatus.DRY_RUN, path=dest, messages=tuple(messages))

        warnings: list[str] = []
        with tempfile.TemporaryDirectory(prefix="skillmanager-install-") as td:
            staged = Path(td) / name
            origin.fetch_into(staged)
            validate_skill_dir(staged)

            version = self._probe_version(origin, warnings)
            record = origin.new_record(version, self._clock())
            if existing is not None and existing.origin_kind == origin.kind and existing.source == origin.source:
                record = replace(record, installed_at=existing.installed_at)

            self._ensure_skills_dir()
            self._replace(staged, dest, record)

        messages.append(f"Installed skill '{name}' to {dest}")
        return SyncResult(
            name=name,
            status=SyncStatus.INSTALLED,
            path=dest,
            messages=tuple(messages),
            warnings=tuple(warnings),
            record=record,
        )

    def update(self, name: str, *, force: bool = False, dry_run: bool = False) -> SyncResult:
        name = validate_skill_name(name)
        skill_dir = self.skills_dir / name
        if not skill_dir.is_dir():
            raise SkillNotInstalledError(f"Skill '{name}' is not installed")

        record = provenance.read(skill_dir)
        if record is None:
            raise MissingMetadataError(f"Skill '{name}' has no metadata, cannot update. Reinstall it.")

        origin = self.resolver.from_record(record)
        current = origin.current_version()
        stored = record.version
        messages: list[str] = []

        if current is None:
            if not force:
                messages.append("Cannot determine the source version. Use --force to re-sync.")
                return SyncResult(
                    name=name, status=SyncStatus.NO_CHANGE, path=skill_dir, messages=tuple(messages), record=record
                )
            messages.append("--force specified, re-syncing from source")
        elif current == stored:
            if not force:
                messages.append(f"Up to date (commit: {_short(current)})")
                return SyncResult(
                    name=name, status=SyncStatus.NO_CHANGE, path=skill_dir, messages=tuple(messages), record=record
                )
            messages.append("Already at latest commit, but --force specified")
        else:
            messages.append(f"Update available: {_short(stored)} -> {_short(current)}")

        if dry_run:
            messages.append(f"Would update skill '{name}'")
            return SyncResult(
                name=name, status=SyncStatus.DRY_RUN, path=skill_dir, messages=tuple(messages), record=record
            )

        origin.ensure_available()
        with tempfile.TemporaryDirectory(prefix="skillmanager-update-") as td:
            staged = Path(td) / name
            origin.fetch_into(staged)
            validate_skill_dir(staged)

            updated = record.advanced(current, self._clock())
            self._replace(staged, skill_dir, updated)

        messages.append(f"Updated '{name}'")
        return SyncResult(
            name=name, status=SyncStatus.UPDATED, path=skill_dir, messages=tuple(messages), record=updated
        )

    def update_all(self, *, force: bool = False, dry_run: bool = False) -> list[SyncResult]:
        results: list[SyncResult] = []
        for skill in list_installed(self.skills_dir):
            try:
                results.append(self.update(skill.name, force=force, dry_run=dry_run))
            except (SkillManagerError, OSError) as e:
                results.append(
                    SyncResult(
                        name=skill.name,
                        status=SyncStatus.FAILED,
                        path=skill.path,
                        record=skill.record,
                        error=format_error(e),
                    )
                )
        return results

    def uninstall(self, name: str, *, dry_run: bool = False) -> SyncResult:
        name = validate_skill_name(name)
        skill_dir = self.skills_dir / name
        if not _exists(skill_dir):
            raise SkillNotInstalledError(f"Skill '{name}' is not installed")

        record = provenance.read(skill_dir)
        messages = [f"Path: {skill_dir}"]
        if record is not None:
            messages.append(f"Source: {record.source}")

        if dry_run:
            messages.append(f"Would remove skill '{name}' from {skill_dir}")
            return SyncResult(
                name=name, status=SyncStatus.DRY_RUN, path=skill_dir, messages=tuple(messages), record=record
            )

        _remove_path(skill_dir)
        messages.append(f"Removed skill '{name}'")
        return SyncResult(name=name, status=SyncStatus.REMOVED, path=skill_dir, messages=tuple(messages), record=record)

    def _probe_version(self, origin: Origin, warnings: list[str]) -> str | None:
        try:
            return origin.current_version()
        except (SkillManagerError, OSError) as e:
            warnings.append(f"Could not determine source version ({format_error(e)}); recording it as unknown.")
            return None

    def _ensure_skills_dir(self) -> None:
        try:
            self.skills_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SkillManagerError(f"Could not create skills directory: {self.skills_dir}") from e
        if not self.skills_dir.is_dir():
            raise SkillManagerError(f"Skills path is not a directory: {self.skills_dir}")

    def _replace(self, staged: Path, dest: Path, record: ProvenanceRecord) -> None:
        backup = dest.with_name(dest.name + BACKUP_SUFFIX)
        if _exists(backup):
            _remove_path(backup)
        had_existing = _exists(dest)
        if had_existing:
            dest.rename(backup)

        try:
            shutil.move(str(staged), str(dest))
            provenance.write(dest, record)
        except Exception:
            if _exists(dest):
                shutil.rmtree(dest, ignore_errors=True)
            if had_existing and _exists(backup):
                backup.rename(dest)
            raise
        finally:
            if _exists(backup) and _exists(dest):
                _remove_path(backup)
