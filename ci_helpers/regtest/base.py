"""
Script: ci_helpers/regtest/base.py
What: The contract every ephemeral test registry follows.
Doing: Holds config defaults, lifecycle state, start/stop bookkeeping, and the HTTP queries
       (`has_image`, `images`) that talk to the registry API.
Why: The container-backed and in-process registries differ only in how they start, load and stop.
Goal: Tests can swap one backend for the other without touching their assertions.
"""

from __future__ import annotations

import abc
import dataclasses
import enum
import logging
import secrets
import socket
import time
from typing import Callable

import httpx

from ci_helpers.common import CiHelperError
from ci_helpers.container import container_runtime

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "registry:2"
DEFAULT_DOMAIN = "localhost"
DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0

MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
)


class RegistryError(CiHelperError):
    """Raised when a test registry cannot be started, queried or loaded."""


class RegistryNotReadyError(RegistryError):
    """Raised when the registry never became reachable after starting."""


class RegistryTeardownError(RegistryError):
    """Collects every failure hit while stopping a registry."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = list(errors)
        lines = "\n".join(f"- {error}" for error in self.errors)
        super().__init__(f"{len(self.errors)} error(s) while stopping registry:\n{lines}")


class RegistryState(str, enum.Enum):
    CREATED = "created"
    PULLING = "pulling"
    STARTING = "starting"
    WAITING_READY = "waiting-ready"
    READY = "ready"
    STOPPED = "stopped"


@dataclasses.dataclass(frozen=True)
class RegistryConfig:
    """
    Options for a test registry. Empty values are filled by `with_defaults()`.

    `port=0` lets the backend pick a free port. `runtime`, `image` and `name`
    only matter for the container backend; `domain` is the registry name used
    in image references returned by `images()`.
    """

    port: int = 0
    enable_tls: bool = False
    name: str = ""
    image: str = ""
    runtime: str = ""
    domain: str = ""
    ready_timeout: float = 10.0
    ready_interval: float = 0.25

    def with_defaults(self) -> RegistryConfig:
        return dataclasses.replace(
            self,
            image=self.image or DEFAULT_IMAGE,
            name=self.name or f"registry-{secrets.token_urlsafe(32)}",
            runtime=self.runtime or container_runtime() or "",
            domain=self.domain or DEFAULT_DOMAIN,
        )


def image_name(image: str) -> str:
    """Last path segment of an image reference: `quay.io/org/echo:v1` -> `echo:v1`."""
    return image.split("/")[-1]


def parse_reference(image: str) -> tuple[str | None, str, str]:
    """
    Split `[registry/]repository[:tag|@digest]` into its three parts.

    The first path segment is only a registry when it looks like a host
    (contains `.` or `:`, or is `localhost`), matching how container tools
    read references. A missing tag means `latest`.
    """
    if not image or image.startswith("/") or image.endswith("/"):
        raise RegistryError(f"invalid image reference {image!r}")

    name, reference = image, "latest"
    if "@" in image:
        name, reference = image.split("@", 1)
    else:
        last_slash = image.rfind("/")
        last_colon = image.rfind(":")
        if last_colon > last_slash:
            name, reference = image[:last_colon], image[last_colon + 1 :]

    registry = None
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, name = first, rest

    if not name or not reference:
        raise RegistryError(f"invalid image reference {image!r}")
    return registry, name, reference


def wait_until(predicate: Callable[[], bool], *, timeout: float, interval: float) -> bool:
    """Call `predicate` every `interval` seconds until it is true or `timeout` passes."""
    deadline = time.monotonic() + timeout
    while True:
        if predicate():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def ping(host: str, port: int, *, timeout: float = 1.0) -> bool:
    """True when a TCP connection to `host:port` succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class Registry(abc.ABC):
    """
    A registry that lives for the duration of one test.

    Use it as a context manager, or call `start()` and `stop()` directly.
    `host`, `url` and the query methods are only valid once `start()` returned.
    """

    hostname = "localhost"

    def __init__(self, config: RegistryConfig | None = None, **options) -> None:
        if config is None:
            config = RegistryConfig(**options)
        elif options:
            config = dataclasses.replace(config, **options)
        self.config = config.with_defaults()
        self.state = RegistryState.CREATED
        self._port: int | None = None

    def __enter__(self) -> Registry:
        if self.state is RegistryState.CREATED:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def tls(self) -> bool:
        return self.config.enable_tls

    @property
    def host(self) -> str:
        if self.state is not RegistryState.READY or self._port is None:
            raise RegistryError(f"registry is not ready (state: {self.state.value})")
        return f"{self.hostname}:{self._port}"

    @property
    def domain(self) -> str:
        """Registry name used when reporting image references."""
        return self.host

    @property
    def url(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{self.host}"

    def start(self) -> Registry:
        """Bring the registry up; on failure everything acquired so far is released."""
        if self.state is not RegistryState.CREATED:
            raise RegistryError(f"registry cannot be started from state {self.state.value}")

        try:
            self._start()
        except BaseException:
            try:
                self.stop()
            except RegistryError as cleanup_exc:
                logger.warning("cleanup after failed registry start also failed: %s", cleanup_exc)
            raise

        self.state = RegistryState.READY
        logger.info("registry ready at %s", self.url)
        return self

    def stop(self) -> None:
        """Tear the registry down. Every cleanup step runs even if an earlier one failed."""
        if self.state is RegistryState.STOPPED:
            return

        errors = self._teardown()
        self.state = RegistryState.STOPPED
        self._port = None
        if errors:
            raise RegistryTeardownError(errors)

    @abc.abstractmethod
    def _start(self) -> None:
        """Acquire resources and set `self._port`; must leave state consistent for `_teardown`."""

    @abc.abstractmethod
    def _teardown(self) -> list[Exception]:
        """Release resources and return the failures instead of raising them."""

    @abc.abstractmethod
    def load(self, image: str, tar_file: str) -> None:
        """Load an image tarball and make it available from this registry as `image`."""

    def _resolve(self, image: str) -> tuple[str, str] | None:
        """Map an image reference to `(repository, reference)` in this registry, or None."""
        registry, repository, reference = parse_reference(image)
        if registry is not None and registry not in {self.host, self.domain}:
            return None
        return repository, reference

    def _client(self, timeout: float) -> httpx.Client:
        # Test registries use throwaway self-signed certificates.
        return httpx.Client(base_url=self.url, verify=False, timeout=timeout)

    def has_image(self, image: str, *, timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS) -> bool:
        """
        True when the registry serves a manifest for `image`.

        A 404 answer means "not present"; any other failure is an error.
        """
        resolved = self._resolve(image)
        if resolved is None:
            return False
        repository, reference = resolved

        try:
            with self._client(timeout) as client:
                response = client.head(
                    f"/v2/{repository}/manifests/{reference}",
                    headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)},
                )
        except httpx.HTTPError as exc:
            raise RegistryError(f"checking for image existence: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        if response.status_code != httpx.codes.OK:
            raise RegistryError(
                f"checking for image existence: unexpected status {response.status_code}"
            )
        return True

    def images(self, *, timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS) -> list[str]:
        """List every `<domain>/<repository>:<tag>` the registry holds."""
        result: list[str] = []
        try:
            with self._client(timeout) as client:
                catalog = client.get("/v2/_catalog")
                catalog.raise_for_status()
                repositories = catalog.json().get("repositories") or []

                for repository in repositories:
                    tags_response = client.get(f"/v2/{repository}/tags/list")
                    tags_response.raise_for_status()
                    for tag in tags_response.json().get("tags") or []:
                        result.append(f"{self.domain}/{repository}:{tag}")
        except httpx.HTTPError as exc:
            raise RegistryError(f"retrieving repositories: {exc}") from exc
        except ValueError as exc:
            raise RegistryError(f"decoding registry response: {exc}") from exc

        return result
