"""
Script: ci_helpers/file.py
What: A small `find`-like search over a directory tree.
Doing: Walks the tree depth first in lexical order and keeps paths that match a type and a base-name glob.
Why: Steps that collect manifests, archives or test reports need a predictable file list.
Goal: Same inputs give the same ordered list on every run.
"""

from __future__ import annotations

import enum
import logging
import os
import re
from typing import Iterator

from ci_helpers.common import CiHelperError

logger = logging.getLogger(__name__)


class FindError(CiHelperError):
    """Raised when the walk fails or the glob pattern is malformed."""


class EntType(str, enum.Enum):
    """Entity kinds a search can be limited to."""

    NONE = ""
    ALL = "all"
    DIR = "dir"
    FILE = "file"


def _class_char(pattern: str, index: int) -> tuple[str, int]:
    """Read one (possibly escaped) character of a `[...]` class."""
    if index >= len(pattern) or pattern[index] in "-]":
        raise FindError(f"malformed glob pattern {pattern!r}: bad character class")
    char = pattern[index]
    index += 1
    if char == "\\":
        if index >= len(pattern):
            raise FindError(f"malformed glob pattern {pattern!r}: trailing backslash")
        char = pattern[index]
        index += 1
    return char, index


def _translate_class(pattern: str, index: int) -> tuple[str, int]:
    """Translate the class starting after `[`; return the regex and the index past `]`."""
    negated = index < len(pattern) and pattern[index] in "^!"
    if negated:
        index += 1

    members: list[str] = []
    count = 0
    while True:
        if index < len(pattern) and pattern[index] == "]" and count:
            index += 1
            break
        low, index = _class_char(pattern, index)
        high = low
        if index < len(pattern) and pattern[index] == "-":
            high, index = _class_char(pattern, index + 1)
        count += 1
        # An inverted range is valid but matches nothing.
        if low <= high:
            members.append(re.escape(low) if low == high else f"{re.escape(low)}-{re.escape(high)}")

    body = "".join(members)
    if negated:
        return f"[^/{body}]", index
    return (f"[{body}]" if body else "(?!)"), index


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """
    Compile a shell glob with `filepath.Match` rules.

    `*` and `?` never match `/`, `[...]` classes take ranges and a leading
    `^` or `!` for negation, and `\\` escapes the next character. An unclosed
    class, an empty class or a trailing backslash raises `FindError`.
    """
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        index += 1
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            translated, index = _translate_class(pattern, index)
            parts.append(translated)
        elif char == "\\":
            if index >= len(pattern):
                raise FindError(f"malformed glob pattern {pattern!r}: trailing backslash")
            parts.append(re.escape(pattern[index]))
            index += 1
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def _walk(path: str) -> Iterator[tuple[str, bool]]:
    """Yield `(path, is_dir)` pre-order, children sorted by name, symlinks not followed."""
    is_dir = os.path.isdir(path) and not os.path.islink(path)
    yield path, is_dir
    if not is_dir:
        return

    with os.scandir(path) as entries:
        children = sorted(entries, key=lambda entry: entry.name)
    for entry in children:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(entry.path)
        else:
            yield entry.path, False


def find(root: str, *, ent_type: EntType = EntType.ALL, name: str = "*") -> list[str]:
    """
    Search recursively from `root` for entries matching the given filters.

    By default every file and directory is returned, including `root` itself.
    """
    ent_type = EntType(ent_type)
    if ent_type is EntType.NONE:
        ent_type = EntType.ALL
    if not name:
        name = "*"
    matcher = compile_pattern(name)

    if not os.path.lexists(root):
        raise FindError(f"walking directories: {root} does not exist")

    result: list[str] = []
    try:
        for path, is_dir in _walk(root):
            if ent_type is EntType.DIR and not is_dir:
                continue
            if ent_type is EntType.FILE and is_dir:
                continue
            if matcher.fullmatch(os.path.basename(os.path.normpath(path))):
                result.append(path)
    except OSError as exc:
        raise FindError(f"walking directories: {exc}") from exc

    logger.debug("find %s (type=%s, name=%s) matched %d entries", root, ent_type.value, name, len(result))
    return result
