"""
Script: ci_helpers/command.py
What: Runs one external executable and captures what it printed.
Doing: Starts the process, feeds optional stdin, waits for exit while watching a cancel event and deadline.
Why: Every wrapper in this package (git, go, container runtimes) needs the same run/inspect/fail shape.
Goal: One blocking call per command that always returns promptly on cancellation.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from typing import Callable, Mapping, Sequence

from ci_helpers.common import CiHelperError

logger = logging.getLogger(__name__)

# How often the runner wakes up to check the cancel event.
POLL_INTERVAL_SECONDS = 0.1
# Grace period between SIGTERM and SIGKILL on cancellation.
TERMINATE_GRACE_SECONDS = 5.0


class CommandError(CiHelperError):
    """Raised when a command cannot be started or did not finish normally."""


class CommandCancelledError(CommandError):
    """Raised when the cancel event fired while the command was running."""


class CommandTimeoutError(CommandError):
    """Raised when the command ran past its timeout."""


class CommandFailedError(CommandError):
    """Describes a command that ran to completion with a non-zero exit code."""

    def __init__(self, argv: Sequence[str], exit_code: int, output: str) -> None:
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output
        details = output.strip()
        message = f"Command failed with exit code {exit_code}: {' '.join(self.argv)}"
        if details:
            message = f"{message}\n{details}"
        super().__init__(message)


class Command:
    """
    One invocation of an external executable.

    `run()` only raises when the process could not run to completion (launch
    failure, cancellation, timeout). A non-zero exit is reported through
    `success` and `error` so callers decide how to word the failure.
    """

    def __init__(
        self,
        executable: str,
        *,
        args: Sequence[str] = (),
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        stdin: bytes | None = None,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
        combined_output: bool = False,
    ) -> None:
        self.executable = executable
        self.args = list(args)
        self.working_dir = working_dir
        self.env = dict(env) if env is not None else None
        self.stdin = stdin
        self.cancel = cancel
        self.timeout = timeout
        self.combined_output = combined_output

        self._stdout = b""
        self._stderr = b""
        self._exit_code: int | None = None

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def run(self) -> None:
        """Start the process and block until it exits."""
        logger.debug("running %s (cwd=%s)", " ".join(self.argv), self.working_dir or ".")
        try:
            process = subprocess.Popen(
                self.argv,
                cwd=self.working_dir,
                env=self.env,
                stdin=subprocess.PIPE if self.stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.combined_output else subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(f"Unable to start {' '.join(self.argv)}: {exc}") from exc

        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        # Popen keeps unsent input between communicate() calls; it must only be passed once.
        pending_input = self.stdin
        while True:
            if self.cancel is not None and self.cancel.is_set():
                self._terminate(process)
                raise CommandCancelledError(f"Command cancelled: {' '.join(self.argv)}")
            if deadline is not None and time.monotonic() >= deadline:
                self._terminate(process)
                raise CommandTimeoutError(
                    f"Command timed out after {self.timeout}s: {' '.join(self.argv)}"
                )

            try:
                stdout, stderr = process.communicate(pending_input, timeout=POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                pending_input = None
                continue
            break

        self._stdout = stdout or b""
        self._stderr = stderr or b""
        self._exit_code = process.returncode
        logger.debug("%s exited with %s", self.executable, self._exit_code)

    def _terminate(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.communicate(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def success(self) -> bool:
        return self._exit_code == 0

    @property
    def stdout(self) -> str:
        return self._stdout.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self._stderr.decode("utf-8", errors="replace")

    @property
    def output(self) -> str:
        """Stdout and stderr together (already interleaved with `combined_output`)."""
        return self.stdout + self.stderr

    @property
    def error(self) -> CommandFailedError | None:
        """Failure details for a finished command, or None when it succeeded."""
        if self._exit_code is None or self.success:
            return None
        details = self.output if self.combined_output else (self.stderr or self.stdout)
        return CommandFailedError(self.argv, self._exit_code, details)


def command_alias(executable: str) -> Callable[..., Command]:
    """
    Bind an executable name once and build `Command`s for it on demand.

    Example: `git = command_alias("git")` then `git(args=["status"])`.
    """

    def build(**kwargs) -> Command:
        return Command(executable, **kwargs)

    return build

