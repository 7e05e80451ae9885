"""
Script: ci_helpers/gocmd.py
What: Wrappers around the `go` toolchain for module metadata and maintenance.
Doing: Resolves the `go` binary once, then runs `go mod why -m` / `go mod tidy` with keyword options.
Why: Release and lint steps need the module path and a tidy go.mod without hand-built shell lines.
Goal: Return the module path or raise a clear error; tidy in place.
"""

from __future__ import annotations

import shutil
import threading

from ci_helpers.command import CommandError, command_alias
from ci_helpers.common import CiHelperError


class GoCmdError(CiHelperError):
    """Raised when a `go` command cannot run or exits non-zero."""


class GoModuleNotFoundError(GoCmdError):
    """Raised when `go mod why -m` does not name a module."""

    def __init__(self) -> None:
        super().__init__("module not found")


class GoCmd:
    """Runs `go` subcommands with a fixed binary path."""

    def __init__(self, bin_path: str | None = None) -> None:
        if not bin_path:
            bin_path = shutil.which("go")
            if bin_path is None:
                raise GoCmdError("looking up 'go' in PATH: executable not found")
        self.bin_path = bin_path
        self._go = command_alias(bin_path)

    def _run(
        self,
        args: list[str],
        *,
        action: str,
        working_dir: str | None,
        cancel: threading.Event | None,
    ) -> str:
        command = self._go(args=args, working_dir=working_dir, cancel=cancel)
        try:
            command.run()
        except CommandError as exc:
            raise GoCmdError(f"starting to {action}: {exc}") from exc

        if not command.success:
            raise GoCmdError(f"{action}: {command.error}") from command.error

        return command.stdout

    def module(
        self,
        *,
        working_dir: str | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """
        Return the current module path.

        `go mod why -m` prints a header line like `# example.com/mod`; the
        module path is the second field of that output.
        """
        output = self._run(
            ["mod", "why", "-m"],
            action="get module information",
            working_dir=working_dir,
            cancel=cancel,
        )
        fields = output.strip().split()
        if len(fields) < 2:
            raise GoModuleNotFoundError()
        return fields[1]

    def tidy(
        self,
        *,
        go_compat: str | None = None,
        go_version: str | None = None,
        working_dir: str | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        args = ["mod", "tidy"]
        if go_compat:
            args.append(f"-compat={go_compat}")
        if go_version:
            args.append(f"-go={go_version}")

        self._run(args, action="tidy module", working_dir=working_dir, cancel=cancel)
