from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Mapping

from ci_helpers.common import CiHelperError


def command_map() -> dict[str, Callable[[], None]]:
    """
    Map CLI command names to Python entry functions.

    Each value is a `main()` function from one workflow step module.
    """
    from ci_helpers.step_download_file import main as download_file
    from ci_helpers.step_find_files import main as find_files
    from ci_helpers.step_git_version_info import main as git_version_info
    from ci_helpers.step_go_module_info import main as go_module_info

    return {
        "git-version-info": git_version_info,
        "go-module-info": go_module_info,
        "download-file": download_file,
        "find-files": find_files,
    }


def build_parser(commands: Mapping[str, Callable[[], None]]) -> argparse.ArgumentParser:
    """Build argument parser with one positional command choice."""
    parser = argparse.ArgumentParser(
        prog="python3 -m ci_helpers.cli",
        description="Run one workflow helper command.",
    )
    parser.add_argument("command", choices=sorted(commands.keys()))
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="log every external command and request",
    )
    return parser


def run_command(command: str, commands: Mapping[str, Callable[[], None]]) -> None:
    """
    Run one registered command.

    `commands` is passed in to keep this function easy to test.
    """
    commands[command]()


def main(argv: list[str] | None = None) -> None:
    # Build command registry once so parser and dispatcher use the same keys.
    commands = command_map()
    parser = build_parser(commands)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        run_command(args.command, commands)
    except CiHelperError as exc:
        # Keep failures short and readable in workflow logs.
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
