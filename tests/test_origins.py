import io
import os
import subprocess
import tarfile
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx

from skillmanager.errors import FetchError, OriginFormatError, SourceMissingError, ValidationError
from skillmanager.github import GitHubClient
from skillmanager.origins import GitHubOrigin, LocalOrigin, OriginResolver, git_head, resolve_local_path
from skillmanager.provenance import GitHubRecord, LocalRecord


def _skill_tarball() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        data = b"# foo\n"
        info = tarfile.TarInfo("toolbox-main/skills/foo/SKILL.md")
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class TestLocalResolution(unittest.TestCase):
    def test_tilde_expands_to_home(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            home = Path(td).resolve()
            (home / "skills" / "foo").mkdir(parents=True)
            with patch.dict(os.environ, {"HOME": str(home)}):
                self.assertEqual(resolve_local_path("~/skills/foo"), home / "skills" / "foo")

    def test_symlinks_are_resolved(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td).resolve()
            real = root / "real-skill"
            real.mkdir()
            link = root / "link"
            link.symlink_to(real, target_is_directory=True)
            self.assertEqual(resolve_local_path(str(link)), real)

    def test_missing_path_fails_immediately(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(SourceMissingError) as cm:
                resolve_local_path(str(Path(td) / "nope"))
        self.assertIn("does not exist", str(cm.exception))

    def test_file_is_not_a_skill_source(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "SKILL.md"
            path.write_text("# foo\n", encoding="utf-8")
            with self.assertRaises(ValidationError) as cm:
                resolve_local_path(str(path))
        self.assertIn("must be a directory", str(cm.exception))


class TestGitHead(unittest.TestCase):
    def test_returns_head_sha(self) -> None:
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout=("c" * 40) + "\n", stderr="")
        with patch("skillmanager.origins.subprocess.run", return_value=done) as run:
            self.assertEqual(git_head(Path("/tmp/skill")), "c" * 40)
        self.assertEqual(run.call_args.args[0], ["git", "-C", "/tmp/skill", "rev-parse", "HEAD"])

    def test_not_a_repository(self) -> None:
        done = subprocess.CompletedProcess(args=[], returncode=128, stdout="", stderr="fatal: not a git repository")
        with patch("skillmanager.origins.subprocess.run", return_value=done):
            self.assertIsNone(git_head(Path("/tmp/skill")))

    def test_git_not_installed(self) -> None:
        with patch("skillmanager.origins.subprocess.run", side_effect=FileNotFoundError("git")):
            self.assertIsNone(git_head(Path("/tmp/skill")))


class TestLocalOrigin(unittest.TestCase):
    def test_fetch_copies_full_tree(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "foo"
            (src / "scripts").mkdir(parents=True)
            (src / "SKILL.md").write_text("# foo\n", encoding="utf-8")
            (src / "scripts" / "run.py").write_text("print('hi')\n", encoding="utf-8")

            origin = LocalOrigin(src, git_head_fn=lambda p: None)
            staged = Path(td) / "staging" / "foo"
            origin.fetch_into(staged)

            self.assertEqual(origin.name, "foo")
            self.assertTrue((staged / "SKILL.md").is_file())
            self.assertTrue((staged / "scripts" / "run.py").is_file())

    def test_current_version_uses_git_runner(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            seen: list[Path] = []

            def fake_head(path: Path) -> str:
                seen.append(path)
                return "d" * 40

            origin = LocalOrigin(Path(td), git_head_fn=fake_head)
            self.assertEqual(origin.current_version(), "d" * 40)
            self.assertEqual(seen, [Path(td)])

    def test_vanished_source(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            origin = LocalOrigin(Path(td) / "gone", git_head_fn=lambda p: "e" * 40)
            with self.assertRaises(SourceMissingError):
                origin.current_version()
            with self.assertRaises(SourceMissingError):
                origin.ensure_available()

    def test_source_replaced_by_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "foo"
            src.write_text("not a skill\n", encoding="utf-8")
            origin = LocalOrigin(src, git_head_fn=lambda p: None)
            with self.assertRaises(ValidationError):
                origin.fetch_into(Path(td) / "staging" / "foo")
            self.assertFalse((Path(td) / "staging").exists())

    def test_new_record(self) -> None:
        origin = LocalOrigin(Path("/opt/skills/foo"))
        record = origin.new_record(None, "2026-01-01T00:00:00.000Z")
        self.assertEqual(record, LocalRecord("/opt/skills/foo", None, "2026-01-01T00:00:00.000Z", "2026-01-01T00:00:00.000Z"))


class TestGitHubOrigin(unittest.TestCase):
    URL = "https://github.com/acme/toolbox/tree/main/skills/foo"

    def test_fetch_extracts_subtree(self) -> None:
        archive = _skill_tarball()
        client = GitHubClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=archive)))
        resolver = OriginResolver(client=client)
        with tempfile.TemporaryDirectory() as td:
            origin = resolver.from_source(self.URL)
            staged = Path(td) / "foo"
            origin.fetch_into(staged)
            self.assertEqual((staged / "SKILL.md").read_text(encoding="utf-8"), "# foo\n")
        client.close()

    def test_fetch_with_wrong_path_fails(self) -> None:
        archive = _skill_tarball()
        client = GitHubClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=archive)))
        with tempfile.TemporaryDirectory() as td:
            origin = OriginResolver(client=client).from_source("https://github.com/acme/toolbox/tree/main/skills/bar")
            with self.assertRaises(FetchError) as cm:
                origin.fetch_into(Path(td) / "bar")
        self.assertIn("Extraction produced no files", str(cm.exception))
        client.close()

    def test_new_record_marks_unknown_version(self) -> None:
        origin = OriginResolver(client=MagicMock()).from_source(self.URL)
        record = origin.new_record(None, "2026-01-01T00:00:00.000Z")
        self.assertEqual(record.commit, "unknown")
        self.assertEqual(record.source_url, self.URL)


class TestOriginResolver(unittest.TestCase):
    def test_dispatches_on_source_shape(self) -> None:
        resolver = OriginResolver(client=MagicMock(), git_head_fn=lambda p: None)
        self.assertIsInstance(resolver.from_source("https://github.com/acme/toolbox/tree/main/skills/foo/"), GitHubOrigin)
        with tempfile.TemporaryDirectory() as td:
            self.assertIsInstance(resolver.from_source(td), LocalOrigin)

    def test_non_github_url_is_a_format_error(self) -> None:
        resolver = OriginResolver(client=MagicMock())
        with self.assertRaises(OriginFormatError):
            resolver.from_source("https://gitlab.com/acme/toolbox/-/tree/main/skills/foo")

    def test_from_record(self) -> None:
        resolver = OriginResolver(client=MagicMock(), git_head_fn=lambda p: None)
        gh = resolver.from_record(
            GitHubRecord("https://github.com/acme/toolbox/tree/main/skills/foo", "a" * 40, "t", "t")
        )
        self.assertIsInstance(gh, GitHubOrigin)
        self.assertEqual(gh.name, "foo")
        self.assertEqual(gh.kind, "github")

        record = LocalRecord("/gone/for/good", None, "t", "t")
        local = resolver.from_record(record)
        self.assertIsInstance(local, LocalOrigin)
        self.assertEqual(local.source, "/gone/for/good")
        self.assertEqual(local.kind, record.origin_kind)


if __name__ == "__main__":
    unittest.main()
