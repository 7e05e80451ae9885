"""
Script: ci_helpers/step_find_files.py
What: Lists files or directories under a root for later workflow steps.
Doing: Reads `FIND_ROOT`, `FIND_TYPE` (all/file/dir) and `FIND_NAME` (glob), then runs `find`.
Why: Upload and lint steps need the same deterministic list of matching paths.
Goal: Print each match and provide `count`.
"""

from __future__ import annotations

from ci_helpers.common import CiHelperError, optional_env, require_env, write_github_outputs
from ci_helpers.file import EntType, find


def parse_ent_type(raw: str) -> EntType:
    """Map the `FIND_TYPE` input to an `EntType`; empty means all."""
    try:
        return EntType(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(t.value for t in EntType if t.value)
        raise CiHelperError(f"Unsupported FIND_TYPE {raw!r}; expected one of: {choices}") from exc


def main() -> None:
    root = require_env("FIND_ROOT")
    ent_type = parse_ent_type(optional_env("FIND_TYPE"))
    name = optional_env("FIND_NAME", "*")

    matches = find(root, ent_type=ent_type, name=name)
    for path in matches:
        print(path)

    write_github_outputs({"count": str(len(matches))})


if __name__ == "__main__":
    main()
