"""
Script: ci_helpers/step_go_module_info.py
What: Reports the Go module path of a working directory.
Doing: Runs `go mod why -m` through GoCmd and writes the module to GITHUB_OUTPUT.
Why: Later steps tag and publish by module path.
Goal: Expose `module` as a step output.
"""

from __future__ import annotations

from ci_helpers.common import optional_env, write_github_outputs
from ci_helpers.gocmd import GoCmd


def main() -> None:
    # GO_BIN lets self-hosted runners point at a toolchain outside PATH.
    go = GoCmd(optional_env("GO_BIN") or None)
    module = go.module(working_dir=optional_env("GO_WORKING_DIR") or None)
    write_github_outputs({"module": module})

    print(f"Go module: {module}")


if __name__ == "__main__":
    main()
