"""
Script: ci_helpers/step_git_version_info.py
What: Publishes the repository's version facts as step outputs.
Doing: Reads latest tag, latest semver version, short commit, branch and tree cleanliness from git.
Why: Release and image-tagging steps all need the same version values.
Goal: Provide `latest_tag`, `latest_version`, `commit`, `branch` and `dirty` for later steps.
"""

from __future__ import annotations

from ci_helpers import git
from ci_helpers.common import optional_env, write_github_outputs


def collect_version_info(working_dir: str | None = None) -> dict[str, str]:
    """
    Gather the values written by this step.

    A repository without tags is not an error here: both tag fields are left
    empty so first releases can still run the workflow.
    """
    try:
        latest_tag = git.latest_tag(working_dir=working_dir)
        latest_version = git.latest_version(working_dir=working_dir)
    except git.NoTagsFoundError:
        latest_tag = ""
        latest_version = ""

    commit = git.rev_parse(format=git.RevParseFormat.SHORT, working_dir=working_dir)
    branch = git.rev_parse(format=git.RevParseFormat.ABBREV_REF, working_dir=working_dir)
    porcelain = git.status(format=git.StatusFormat.PORCELAIN, working_dir=working_dir)

    return {
        "latest_tag": latest_tag,
        "latest_version": latest_version,
        "commit": commit,
        "branch": branch,
        "dirty": "true" if porcelain else "false",
    }


def main() -> None:
    working_dir = optional_env("GIT_WORKING_DIR") or None
    values = collect_version_info(working_dir)
    write_github_outputs(values)

    print(f"Latest tag: {values['latest_tag'] or '(none)'}")
    print(f"Latest version: {values['latest_version'] or '(none)'}")
    print(f"Commit: {values['commit']} on {values['branch']}")
    if values["dirty"] == "true":
        print("Working tree has uncommitted changes.")


if __name__ == "__main__":
    main()
