from __future__ import annotations

import argparse
import json
import sys
import textwrap
from typing import NoReturn

from ._version import __version__
from .config import Config, load_config, merge_config, resolve_skills_dir
from .errors import SkillManagerError, UsageError, format_error
from .github import GitHubClient
from .origins import OriginResolver
from .provenance import to_dict
from .registry import list_installed
from .sync import SyncEngine, SyncResult, SyncStatus

DRY_RUN_FOOTER = "Dry run complete. No changes made."


class _ArgumentParser(argparse.ArgumentParser):
    # Usage errors exit 1 like every other reported failure.
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(
        prog="skillmanager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install and update skills from local paths or GitHub subtrees.",
        epilog=textwrap.dedent(
            """\
            Examples:
              skillmanager install ~/Code/my-plugins/skills/my-skill
              skillmanager install https://github.com/owner/repo/tree/branch/path/to/skill
              skillmanager uninstall my-skill
              skillmanager update my-skill --dry-run
              skillmanager update --all

            Environment variables:
              SKILLMANAGER_SKILLS_DIR, SKILLMANAGER_CONFIG_PATH, SKILLMANAGER_GITHUB_API_URL,
              SKILLMANAGER_TIMEOUT_S, GITHUB_TOKEN
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser, *, default: object = None) -> None:
        # Accepted both before and after the subcommand; the subcommand copy only
        # sets the value when given so it does not clobber the top-level one.
        parser.add_argument("--skills-dir", default=default, help="Skills directory (default: ~/.claude/skills)")
        parser.add_argument("--timeout-s", type=float, default=default, help="HTTP timeout in seconds")

    _add_runtime_overrides(p)
    p.add_argument("--version", action="version", version=f"skillmanager {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    install = sub.add_parser("install", help="Install a skill from a local path or GitHub URL")
    _add_runtime_overrides(install, default=argparse.SUPPRESS)
    install.add_argument("source", help="Local path or https://github.com/<owner>/<repo>/tree/<branch>/<path>")
    install.add_argument("--force", action="store_true", help="Overwrite an existing skill")
    install.add_argument("--dry-run", action="store_true", help="Show what would be done without making changes")

    ls = sub.add_parser("list", help="List installed skills")
    _add_runtime_overrides(ls, default=argparse.SUPPRESS)
    ls.add_argument("--json", action="store_true", help="Output JSON")

    uninstall = sub.add_parser("uninstall", help="Remove an installed skill")
    _add_runtime_overrides(uninstall, default=argparse.SUPPRESS)
    uninstall.add_argument("skill", help="Skill name (directory name under the skills directory)")
    uninstall.add_argument("--dry-run", action="store_true", help="Show what would be done without making changes")

    update = sub.add_parser("update", help="Check for updates and re-install changed skills")
    _add_runtime_overrides(update, default=argparse.SUPPRESS)
    update.add_argument("skill", nargs="?", help="Skill name")
    update.add_argument("--all", action="store_true", help="Update all installed skills")
    update.add_argument("--force", action="store_true", help="Re-install even if no change is detected")
    update.add_argument("--dry-run", action="store_true", help="Show what would be done without making changes")

    return p


def _runtime_config(args: argparse.Namespace) -> Config:
    return merge_config(
        load_config(),
        skills_dir=getattr(args, "skills_dir", None),
        timeout_s=getattr(args, "timeout_s", None),
    )


def _make_client(cfg: Config) -> GitHubClient:
    return GitHubClient(token=cfg.github_token, api_url=cfg.github_api_url, timeout_s=cfg.timeout_s)


def _print_result(result: SyncResult) -> None:
    for line in result.messages:
        print(f"  {line}")
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)


def cmd_install(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    with _make_client(cfg) as client:
        engine = SyncEngine(skills_dir=resolve_skills_dir(cfg), resolver=OriginResolver(client=client))
        print(f"Installing skill from {args.source}...")
        result = engine.install(args.source, force=args.force, dry_run=args.dry_run)

    _print_result(result)
    if result.status is SyncStatus.DRY_RUN:
        print("")
        print(DRY_RUN_FOOTER)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    skills = list_installed(resolve_skills_dir(cfg))

    if args.json:
        payload = [{"name": s.name, "path": str(s.path), **to_dict(s.record)} for s in skills]
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    if not skills:
        print("No skills installed.")
        return 0

    print(f"Installed skills ({len(skills)}):")
    print("")
    for s in skills:
        version = s.record.version
        print(f"  {s.name}")
        print(f"    source: {s.record.source}")
        print(f"    commit: {version[:12] if version else 'unknown'}")
        print(f"    updated: {s.record.updated_at}")
        print("")
    return 0


def cmd_uninstall(args: argparse.Namespace) -> int:
    cfg = _runtime_config(args)
    with _make_client(cfg) as client:
        engine = SyncEngine(skills_dir=resolve_skills_dir(cfg), resolver=OriginResolver(client=client))
        print(f"Removing skill '{args.skill}'...")
        result = engine.uninstall(args.skill, dry_run=args.dry_run)

    _print_result(result)
    if result.status is SyncStatus.DRY_RUN:
        print("")
        print(DRY_RUN_FOOTER)
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    if not args.skill and not args.all:
        raise UsageError("Specify a skill name or use --all")
    if args.skill and args.all:
        raise UsageError("Specify either a skill name or --all, not both")

    cfg = _runtime_config(args)
    with _make_client(cfg) as client:
        engine = SyncEngine(skills_dir=resolve_skills_dir(cfg), resolver=OriginResolver(client=client))
        if not args.all:
            print(f"Checking '{args.skill}' for updates...")
            result = engine.update(args.skill, force=args.force, dry_run=args.dry_run)
            _print_result(result)
            return 0

        results = engine.update_all(force=args.force, dry_run=args.dry_run)

    if not results:
        print("No installed skills with metadata found.")
        return 0

    for result in results:
        print(f"Checking '{result.name}' for updates...")
        _print_result(result)
        if result.error:
            print(f"error: {result.name}: {result.error}", file=sys.stderr)

    failed = [r.name for r in results if not r.ok]
    if failed:
        print(f"error: {len(failed)} of {len(results)} skill(s) failed to update: {', '.join(failed)}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.cmd == "install":
            return cmd_install(args)
        if args.cmd == "list":
            return cmd_list(args)
        if args.cmd == "uninstall":
            return cmd_uninstall(args)
        if args.cmd == "update":
            return cmd_update(args)
        raise AssertionError("unreachable")
    except SkillManagerError as e:
        print(f"error: {format_error(e)}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
