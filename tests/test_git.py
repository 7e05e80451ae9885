"""
Script: tests/test_git.py
What: Tests for the git wrappers.
Doing: Checks argument mapping and version parsing directly, then runs the wrappers against a throwaway repository.
Why: Release steps trust these values for tags and image names.
Goal: Keep tag ordering and version selection stable.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from ci_helpers import git

GIT_AVAILABLE = shutil.which("git") is not None


def run_git(repo: Path, *args: str, date: str | None = None) -> str:
    env = dict(os.environ)
    if date is not None:
        env["GIT_COMMITTER_DATE"] = date
        env["GIT_AUTHOR_DATE"] = date
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test User",
            "-c", "user.email=test@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "tag.gpgsign=false",
            *args,
        ],
        cwd=repo,
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def make_repo(root: Path) -> Path:
    repo = root / "repo"
    repo.mkdir()
    run_git(repo, "init", "-q")
    (repo / "a.txt").write_text("first\n", encoding="utf-8")
    run_git(repo, "add", "a.txt")
    run_git(repo, "commit", "-q", "-m", "initial", date="2024-01-01T00:00:00Z")
    run_git(repo, "checkout", "-q", "-b", "test")
    return repo


class GitValueMappingTests(unittest.TestCase):
    def test_rev_parse_format_flags(self) -> None:
        self.assertEqual(git.RevParseFormat.ABBREV_REF.to_git_value(), "--abbrev-ref")
        self.assertEqual(git.RevParseFormat.SHORT.to_git_value(), "--short")
        self.assertEqual(git.RevParseFormat.TOP_LEVEL.to_git_value(), "--show-toplevel")

    def test_sort_key_defaults_to_refname(self) -> None:
        self.assertEqual(git.SortKey.NONE.to_git_value(), "-refname")
        self.assertEqual(git.SortKey.REF_NAME.to_git_value(), "-refname")
        self.assertEqual(git.SortKey.CREATION_DATE.to_git_value(), "-creatordate")

    def test_diff_and_status_flags(self) -> None:
        self.assertEqual(git.DiffFormat.NAME_ONLY.to_git_value(), "--name-only")
        self.assertEqual(git.DiffFormat.NAME_STATUS.to_git_value(), "--name-status")
        self.assertEqual(git.StatusFormat.LONG.to_git_value(), "--long")
        self.assertEqual(git.StatusFormat.PORCELAIN.to_git_value(), "--porcelain")
        self.assertEqual(git.StatusFormat.SHORT.to_git_value(), "--short")

    def test_unknown_status_format_is_rejected_before_running_git(self) -> None:
        with mock.patch.object(git, "_run_git") as run_git:
            with self.assertRaises(ValueError):
                git.status(format="verbose")
        run_git.assert_not_called()


class VersionTests(unittest.TestCase):
    def test_highest_version_picks_semver_max(self) -> None:
        self.assertEqual(git.highest_version(["v1.0.0", "v2.0.0"]), "v2.0.0")

    def test_highest_version_is_not_lexical(self) -> None:
        self.assertEqual(git.highest_version(["v1.9.0", "v1.10.0", "v1.2.0"]), "v1.10.0")

    def test_prerelease_sorts_before_release(self) -> None:
        self.assertEqual(git.highest_version(["v1.0.0-rc.1", "v1.0.0"]), "v1.0.0")

    def test_empty_tag_list_raises_no_tags(self) -> None:
        with self.assertRaises(git.NoTagsFoundError) as ctx:
            git.highest_version([])
        self.assertEqual(str(ctx.exception), "no tags found")

    def test_lenient_parsing(self) -> None:
        self.assertEqual(str(git.parse_version("v1")), "1.0.0")
        self.assertEqual(str(git.parse_version(" 1.2 ")), "1.2.0")
        self.assertEqual(str(git.parse_version("V01.002.3")), "1.2.3")
        self.assertEqual(str(git.parse_version("v2.0.0-beta.1")), "2.0.0-beta.1")

    def test_unparseable_tag_raises(self) -> None:
        with self.assertRaises(git.VersionParseError):
            git.highest_version(["v1.0.0", "release-candidate"])


@unittest.skipUnless(GIT_AVAILABLE, "git is not installed")
class GitRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.repo = make_repo(Path(self._temp_dir.name))
        self.working_dir = str(self.repo)

    def _tag_out_of_order(self) -> None:
        # v2.0.0 is created before v1.0.0, so refname and creation date disagree.
        run_git(self.repo, "tag", "-a", "v2.0.0", "-m", "two", date="2024-01-02T00:00:00Z")
        run_git(self.repo, "tag", "-a", "v1.0.0", "-m", "one", date="2024-01-03T00:00:00Z")

    def test_rev_parse_formats(self) -> None:
        top_level = git.rev_parse(format=git.RevParseFormat.TOP_LEVEL, working_dir=self.working_dir)
        self.assertEqual(os.path.realpath(top_level), os.path.realpath(self.working_dir))

        branch = git.rev_parse(format=git.RevParseFormat.ABBREV_REF, working_dir=self.working_dir)
        self.assertEqual(branch, "test")

        full = git.rev_parse(working_dir=self.working_dir)
        short = git.rev_parse(format=git.RevParseFormat.SHORT, working_dir=self.working_dir)
        self.assertEqual(len(full), 40)
        self.assertTrue(full.startswith(short))

    def test_list_tags(self) -> None:
        self._tag_out_of_order()
        self.assertCountEqual(git.list_tags(working_dir=self.working_dir), ["v1.0.0", "v2.0.0"])

    def test_sort_keys_give_different_orders(self) -> None:
        self._tag_out_of_order()
        by_name = git.list_tags(sorted=True, sort_key=git.SortKey.REF_NAME, working_dir=self.working_dir)
        by_date = git.list_tags(
            sorted=True, sort_key=git.SortKey.CREATION_DATE, working_dir=self.working_dir
        )

        self.assertEqual(by_name, ["v2.0.0", "v1.0.0"])
        self.assertEqual(by_date, ["v1.0.0", "v2.0.0"])

    def test_latest_tag_and_version(self) -> None:
        self._tag_out_of_order()
        self.assertEqual(git.latest_tag(working_dir=self.working_dir), "v2.0.0")
        self.assertEqual(git.latest_version(working_dir=self.working_dir), "v2.0.0")

    def test_no_tags(self) -> None:
        with self.assertRaises(git.NoTagsFoundError):
            git.latest_tag(working_dir=self.working_dir)
        with self.assertRaises(git.NoTagsFoundError):
            git.latest_version(working_dir=self.working_dir)

    def test_latest_version_rejects_non_semver_tag(self) -> None:
        run_git(self.repo, "tag", "v1.0.0")
        run_git(self.repo, "tag", "nightly")
        with self.assertRaises(git.VersionParseError):
            git.latest_version(working_dir=self.working_dir)

    def test_status_and_diff(self) -> None:
        self.assertEqual(git.status(format=git.StatusFormat.PORCELAIN, working_dir=self.working_dir), "")
        self.assertEqual(git.diff(working_dir=self.working_dir), "")

        (self.repo / "a.txt").write_text("changed\n", encoding="utf-8")
        (self.repo / "new.txt").write_text("new\n", encoding="utf-8")

        porcelain = git.status(format=git.StatusFormat.PORCELAIN, working_dir=self.working_dir)
        self.assertIn("M a.txt", porcelain)
        self.assertIn("?? new.txt", porcelain)
        self.assertIn("On branch test", git.status(working_dir=self.working_dir))
        self.assertEqual(git.diff(format=git.DiffFormat.NAME_ONLY, working_dir=self.working_dir), "a.txt")
        self.assertEqual(
            git.diff(format=git.DiffFormat.NAME_STATUS, working_dir=self.working_dir).split(),
            ["M", "a.txt"],
        )
        self.assertIn("+changed", git.diff(working_dir=self.working_dir))

    def test_outside_repository_raises(self) -> None:
        outside = Path(self._temp_dir.name) / "plain"
        outside.mkdir()
        with self.assertRaises(git.GitError):
            git.rev_parse(working_dir=str(outside))

    def test_missing_git_binary_raises(self) -> None:
        with self.assertRaises(git.GitError):
            git.list_tags(working_dir=self.working_dir, git_bin="/nonexistent/git")


if __name__ == "__main__":
    unittest.main()
