"""
Script: ci_helpers/regtest/fixtures.py
What: unittest entry points for the registry backends.
Doing: Picks the container or in-process backend, starts it and registers stop() as a cleanup.
Why: Tests should not repeat start/stop bookkeeping.
Goal: A ready registry with one call, torn down when the test ends.
"""

from __future__ import annotations

import unittest

from ci_helpers.regtest.base import Registry, RegistryConfig, RegistryError
from ci_helpers.regtest.container import ContainerRegistry
from ci_helpers.regtest.inprocess import InProcessRegistry


def start_registry(config: RegistryConfig | None = None, *, in_process: bool = False, **options) -> Registry:
    """Create and start a registry; the caller owns `stop()`."""
    backend = InProcessRegistry if in_process else ContainerRegistry
    return backend(config, **options).start()


def registry_fixture(
    test_case: unittest.TestCase,
    config: RegistryConfig | None = None,
    *,
    in_process: bool = False,
    **options,
) -> Registry:
    """
    Start a registry for one test and stop it during the test's cleanup.

    A registry that cannot start fails the test right away. Teardown errors
    surface as test errors through `addCleanup`.
    """
    try:
        registry = start_registry(config, in_process=in_process, **options)
    except RegistryError as exc:
        test_case.fail(f"starting registry: {exc}")
    test_case.addCleanup(registry.stop)
    return registry
