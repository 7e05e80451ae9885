"""
Package: ci_helpers.regtest
What: Ephemeral container registries for integration tests.
Doing: Offers a container-backed registry and an in-process one behind the same `Registry` contract.
Why: Tests that push, pull or inspect images need a registry they can create and throw away.
Goal: `registry_fixture(self)` in a test is all it takes to get a ready registry.
"""

from ci_helpers.regtest.base import (
    Registry,
    RegistryConfig,
    RegistryError,
    RegistryNotReadyError,
    RegistryState,
    RegistryTeardownError,
)
from ci_helpers.regtest.container import ContainerRegistry
from ci_helpers.regtest.fixtures import registry_fixture, start_registry
from ci_helpers.regtest.inprocess import InProcessRegistry

__all__ = [
    "ContainerRegistry",
    "InProcessRegistry",
    "Registry",
    "RegistryConfig",
    "RegistryError",
    "RegistryNotReadyError",
    "RegistryState",
    "RegistryTeardownError",
    "registry_fixture",
    "start_registry",
]
