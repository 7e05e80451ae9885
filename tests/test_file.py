"""
Script: tests/test_file.py
What: Unit tests for the file search helper.
Doing: Builds small trees in a temp dir and checks ordering, type filters and glob rules.
Why: Steps depend on the exact list and order of matched paths.
Goal: Keep find() and its glob dialect stable.
"""

from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path

from ci_helpers.file import EntType, FindError, compile_pattern, find


class FindTests(unittest.TestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.root = os.path.join(temp_dir.name, "testdata")
        os.makedirs(os.path.join(self.root, "sub"))
        for relative in ("a.txt", "sub/b.txt", "sub/c.notxt"):
            Path(self.root, relative).write_text(relative, encoding="utf-8")

    def path(self, relative: str = "") -> str:
        return os.path.join(self.root, relative) if relative else self.root

    def test_defaults_return_everything_including_root(self) -> None:
        self.assertEqual(
            find(self.root),
            [
                self.path(),
                self.path("a.txt"),
                self.path("sub"),
                self.path("sub/b.txt"),
                self.path("sub/c.notxt"),
            ],
        )

    def test_type_and_name_filters(self) -> None:
        cases = {
            "all entities": (EntType.ALL, "*", ["", "a.txt", "sub", "sub/b.txt", "sub/c.notxt"]),
            "none means all": (EntType.NONE, "*", ["", "a.txt", "sub", "sub/b.txt", "sub/c.notxt"]),
            "all files": (EntType.FILE, "*", ["a.txt", "sub/b.txt", "sub/c.notxt"]),
            "all dirs": (EntType.DIR, "*", ["", "sub"]),
            "all txt files": (EntType.FILE, "*.txt", ["a.txt", "sub/b.txt"]),
            "non-matching pattern": (EntType.FILE, "*.dne", []),
            "dir by name": (EntType.DIR, "su?", ["sub"]),
        }
        for name, (ent_type, pattern, expected) in cases.items():
            with self.subTest(name):
                self.assertEqual(
                    find(self.root, ent_type=ent_type, name=pattern),
                    [self.path(relative) for relative in expected],
                )

    def test_entries_are_visited_in_lexical_order(self) -> None:
        for name in ("z.txt", "m.txt", "b0.txt"):
            Path(self.root, name).write_text(name, encoding="utf-8")
        names = [os.path.basename(p) for p in find(self.root, ent_type=EntType.FILE, name="*.txt")]
        self.assertEqual(names, ["a.txt", "b0.txt", "m.txt", "b.txt", "z.txt"])

    @unittest.skipIf(os.name == "nt", "symlinks need privileges on Windows")
    def test_symlinked_directory_is_not_followed(self) -> None:
        os.symlink(self.path("sub"), self.path("link"))
        self.assertEqual(find(self.root, ent_type=EntType.FILE, name="link"), [self.path("link")])
        self.assertNotIn(self.path("link/b.txt"), find(self.root))

    def test_malformed_pattern_raises(self) -> None:
        with self.assertRaises(FindError):
            find(self.root, name="[a-")

    def test_missing_root_raises(self) -> None:
        with self.assertRaises(FindError):
            find(self.path("does-not-exist"))

    @unittest.skipIf(os.name == "nt", "names with `*` or `\\` are invalid on Windows")
    def test_negated_class_and_escapes(self) -> None:
        names = ("abc", "bcd", "*", "\\x")
        glob_dir = os.path.join(os.path.dirname(self.root), "globs")
        os.makedirs(glob_dir)
        for name in names:
            Path(glob_dir, name).write_text(name, encoding="utf-8")

        def matches(pattern: str) -> list[str]:
            return [os.path.basename(p) for p in find(glob_dir, ent_type=EntType.FILE, name=pattern)]

        self.assertEqual(matches("[^a]*"), ["*", "\\x", "bcd"])
        self.assertEqual(matches("[!a]*"), ["*", "\\x", "bcd"])
        self.assertEqual(matches("\\*"), ["*"])
        self.assertEqual(matches("\\\\?"), ["\\x"])
        self.assertEqual(matches("[a-b]??"), ["abc", "bcd"])


class CompilePatternTests(unittest.TestCase):
    def test_matches_like_filepath_match(self) -> None:
        cases = [
            ("*.txt", "a.txt", True),
            ("*.txt", "a.md", False),
            ("?", "/", False),
            ("*", "a/b", False),
            ("[^a]", "b", True),
            ("[^a]", "a", False),
            ("[\\]]", "]", True),
            ("[a-c]x", "bx", True),
            ("[c-a]", "b", False),
            ("\\[x", "[x", True),
            ("a\\*", "ab", False),
        ]
        for pattern, name, expected in cases:
            with self.subTest(pattern=pattern, name=name):
                self.assertEqual(bool(compile_pattern(pattern).fullmatch(name)), expected)

    def test_accepts_well_formed_patterns(self) -> None:
        for pattern in ("*", "*.txt", "[abc]*", "[!a]?", "[^a]?", "[\\]]x", "\\*"):
            with self.subTest(pattern):
                compile_pattern(pattern)

    def test_rejects_malformed_patterns(self) -> None:
        for pattern in ("[", "file[0-9", "abc\\", "[]", "[]]x", "[a-", "[-a]", "[a-]", "[\\"):
            with self.subTest(pattern):
                with self.assertRaises(FindError):
                    compile_pattern(pattern)


if __name__ == "__main__":
    unittest.main()
