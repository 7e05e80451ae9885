"""
Script: ci_helpers/git.py
What: Read-only wrappers around the `git` executable.
Doing: Builds fixed argument lists from keyword options, runs them, and trims or splits the output.
Why: Workflow steps need the current commit, branch, tags and tree state without shelling out by hand.
Goal: Small functions that return plain strings and raise `GitError` on any failure.
"""

from __future__ import annotations

import enum
import re
import threading

import semver

from ci_helpers.command import CommandError, command_alias
from ci_helpers.common import CiHelperError, optional_env

# Resolved once per process; tests pass `git_bin=` instead of patching this.
GIT_BIN = optional_env("CI_HELPERS_GIT_BIN", "git")

_VERSION_CORE_RE = re.compile(r"^(\d+(?:\.\d+){0,2})(.*)$")


class GitError(CiHelperError):
    """Raised when a git command cannot run or exits non-zero."""


class NoTagsFoundError(GitError):
    """Raised when the repository has no tags."""

    def __init__(self) -> None:
        super().__init__("no tags found")


class VersionParseError(GitError):
    """Raised when a tag cannot be read as a semantic version."""


class RevParseFormat(str, enum.Enum):
    ABBREV_REF = "abbrev-ref"
    SHORT = "short"
    TOP_LEVEL = "top-level"

    def to_git_value(self) -> str:
        return {
            RevParseFormat.ABBREV_REF: "--abbrev-ref",
            RevParseFormat.SHORT: "--short",
            RevParseFormat.TOP_LEVEL: "--show-toplevel",
        }[self]


class SortKey(str, enum.Enum):
    NONE = ""
    CREATION_DATE = "creation date"
    REF_NAME = "refname"

    def to_git_value(self) -> str:
        # Newest first in both cases, so the first tag is the "latest" one.
        if self is SortKey.CREATION_DATE:
            return "-creatordate"
        return "-refname"


class DiffFormat(str, enum.Enum):
    NAME_ONLY = "name only"
    NAME_STATUS = "name status"

    def to_git_value(self) -> str:
        if self is DiffFormat.NAME_ONLY:
            return "--name-only"
        return "--name-status"


class StatusFormat(str, enum.Enum):
    LONG = "long"
    PORCELAIN = "porcelain"
    SHORT = "short"

    def to_git_value(self) -> str:
        if self is StatusFormat.PORCELAIN:
            return "--porcelain"
        if self is StatusFormat.SHORT:
            return "--short"
        return "--long"


def _run_git(
    args: list[str],
    *,
    action: str,
    working_dir: str | None,
    cancel: threading.Event | None,
    git_bin: str,
) -> str:
    git = command_alias(git_bin)
    command = git(args=args, working_dir=working_dir, cancel=cancel)
    try:
        command.run()
    except CommandError as exc:
        raise GitError(f"starting to {action}: {exc}") from exc

    if not command.success:
        raise GitError(f"{action}: {command.error}") from command.error

    return command.stdout


def rev_parse(
    *,
    format: RevParseFormat | None = None,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> str:
    """
    Run `git rev-parse` for HEAD in the requested format.

    With `RevParseFormat.TOP_LEVEL` the repository root is returned instead,
    so HEAD is not passed.
    """
    args = ["rev-parse"]
    if format is not None:
        args.append(RevParseFormat(format).to_git_value())
    if format != RevParseFormat.TOP_LEVEL:
        args.append("HEAD")

    output = _run_git(
        args, action="run rev-parse", working_dir=working_dir, cancel=cancel, git_bin=git_bin
    )
    return output.strip()


def list_tags(
    *,
    sorted: bool = False,
    sort_key: SortKey = SortKey.NONE,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> list[str]:
    """List all tags; with `sorted=True` git orders them newest first by `sort_key`."""
    args = ["tag", "-l"]
    if sorted:
        args.extend(["--sort", SortKey(sort_key).to_git_value()])

    output = _run_git(
        args, action="list tags", working_dir=working_dir, cancel=cancel, git_bin=git_bin
    )
    return output.split()


def latest_tag(
    *,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> str:
    """Return the first tag in reverse refname order."""
    tags = list_tags(sorted=True, working_dir=working_dir, cancel=cancel, git_bin=git_bin)
    if not tags:
        raise NoTagsFoundError()
    return tags[0]


def parse_version(tag: str) -> semver.Version:
    """
    Parse a tag leniently as a semantic version.

    Accepts `v1.2.3`, ` 1.2 `, `v1` and `01.002.3`; missing parts become 0.
    """
    cleaned = tag.strip()
    if cleaned[:1] in {"v", "V"}:
        cleaned = cleaned[1:]
    match = _VERSION_CORE_RE.match(cleaned)
    if match:
        # Only the numeric core is normalized; pre-release and build metadata stay as-is.
        core = ".".join(str(int(part)) for part in match.group(1).split("."))
        cleaned = core + match.group(2)
    try:
        return semver.Version.parse(cleaned, optional_minor_and_patch=True)
    except (ValueError, TypeError) as exc:
        raise VersionParseError(f"parsing version {tag!r}: {exc}") from exc


def latest_version(
    *,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> str:
    """
    Return the highest tag by semver precedence, always `v` prefixed.

    Every tag must parse as a version; one bad tag fails the whole call.
    """
    tags = list_tags(working_dir=working_dir, cancel=cancel, git_bin=git_bin)
    return highest_version(tags)


def highest_version(tags: list[str]) -> str:
    if not tags:
        raise NoTagsFoundError()
    versions = [parse_version(tag) for tag in tags]
    return f"v{max(versions)}"


def diff(
    *,
    format: DiffFormat | None = None,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> str:
    """Return the working tree diff, optionally names only or names with status."""
    args = ["diff"]
    if format is not None:
        args.append(DiffFormat(format).to_git_value())

    output = _run_git(
        args, action="get git diff", working_dir=working_dir, cancel=cancel, git_bin=git_bin
    )
    return output.strip()


def status(
    *,
    format: StatusFormat | None = None,
    working_dir: str | None = None,
    cancel: threading.Event | None = None,
    git_bin: str = GIT_BIN,
) -> str:
    args = ["status"]
    if format is not None:
        args.append(StatusFormat(format).to_git_value())

    output = _run_git(
        args, action="get git status", working_dir=working_dir, cancel=cancel, git_bin=git_bin
    )
    return output.strip()
