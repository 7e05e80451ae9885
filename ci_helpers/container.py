"""
Script: ci_helpers/container.py
What: Finds the container runtime CI jobs should use.
Doing: Honors CI_HELPERS_CONTAINER_RUNTIME, then looks for podman and docker on PATH.
Why: Registry fixtures and image steps need one runtime choice shared by the whole job.
Goal: Pick podman where both are installed unless the job says otherwise.
"""

from __future__ import annotations

import shutil

from ci_helpers.common import optional_env

PREFERRED_RUNTIMES = ("podman", "docker")


def container_runtime() -> str | None:
    """
    Return the path of the first container runtime found on PATH.

    `CI_HELPERS_CONTAINER_RUNTIME` wins when set, so a job can force docker on
    hosts that also ship podman.
    """
    override = optional_env("CI_HELPERS_CONTAINER_RUNTIME").strip()
    if override:
        return shutil.which(override) or override

    for runtime in PREFERRED_RUNTIMES:
        runtime_path = shutil.which(runtime)
        if runtime_path:
            return runtime_path
    return None
