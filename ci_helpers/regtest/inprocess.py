"""
Script: ci_helpers/regtest/inprocess.py
What: A test registry served from a background thread of the test process itself.
Doing: Starts an HTTPS in-memory registry on a local port and pushes saved image archives to it
       over the registry API.
Why: Same contract as the container-backed registry, without needing podman or docker.
Goal: Fast registry fixtures for unit-level tests.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

import httpx

from ci_helpers.regtest.base import Registry, RegistryConfig, RegistryError
from ci_helpers.regtest.certs import generate_certs
from ci_helpers.regtest.server import RegistryServer
from ci_helpers.regtest.tarball import ArchiveImage, Blob, DOCKER_MANIFEST_MEDIA_TYPE, read_image_archive

logger = logging.getLogger(__name__)

DEFAULT_PUSH_TIMEOUT_SECONDS = 30.0


class InProcessRegistry(Registry):
    """
    Registry served by `RegistryServer` on `127.0.0.1`.

    It always speaks HTTPS with a self-signed certificate covering the
    configured domain, `localhost` and `127.0.0.1`. Images are reported as
    `<domain>/<repository>:<tag>`.
    """

    hostname = "127.0.0.1"

    def __init__(self, config: RegistryConfig | None = None, **options) -> None:
        super().__init__(config, **options)
        self._server: RegistryServer | None = None
        self._cert_dir: str | None = None

    @property
    def tls(self) -> bool:
        return True

    @property
    def domain(self) -> str:
        return self.config.domain

    def _start(self) -> None:
        self._cert_dir = tempfile.mkdtemp(prefix="regtest-certs-")
        hostnames = list(dict.fromkeys([self.config.domain, "localhost", self.hostname]))
        cert_path, key_path = generate_certs(Path(self._cert_dir), hostnames)

        self._server = RegistryServer(
            host=self.hostname,
            port=self.config.port,
            certfile=str(cert_path),
            keyfile=str(key_path),
        )
        self._port = self._server.start()

    def _teardown(self) -> list[Exception]:
        errors: list[Exception] = []

        if self._server is not None:
            self._server.stop()
            self._server = None

        if self._cert_dir is not None:
            try:
                shutil.rmtree(self._cert_dir)
            except OSError as exc:
                errors.append(RegistryError(f"removing certificates {self._cert_dir}: {exc}"))
            self._cert_dir = None

        return errors

    def load(
        self,
        image: str,
        tar_file: str,
        *,
        timeout: float = DEFAULT_PUSH_TIMEOUT_SECONDS,
    ) -> None:
        """Push the image saved in `tar_file` to this registry under `image`."""
        resolved = self._resolve(image)
        if resolved is None:
            raise RegistryError(f"image {image!r} does not belong to registry {self.domain}")
        repository, reference = resolved
        if reference.startswith("sha256:"):
            raise RegistryError(f"image {image!r} must be pushed by tag, not digest")

        archive = read_image_archive(tar_file, image=image)
        try:
            with self._client(timeout) as client:
                push_image(client, repository, reference, archive)
        except httpx.HTTPError as exc:
            raise RegistryError(f"pushing image to registry: {exc}") from exc
        logger.info("pushed %s/%s:%s", self.domain, repository, reference)


def push_blob(client: httpx.Client, repository: str, blob: Blob) -> None:
    """Upload one blob unless the registry already has it."""
    existing = client.head(f"/v2/{repository}/blobs/{blob.digest}")
    if existing.status_code == httpx.codes.OK:
        return

    response = client.post(
        f"/v2/{repository}/blobs/uploads/",
        params={"digest": blob.digest},
        content=blob.data,
    )
    if response.status_code == httpx.codes.ACCEPTED:
        # Registry ignored the single-request upload; finish it at the session URL.
        response = client.put(
            response.headers["Location"],
            params={"digest": blob.digest},
            content=blob.data,
        )
    if response.status_code != httpx.codes.CREATED:
        raise RegistryError(
            f"uploading blob {blob.digest}: unexpected status {response.status_code}: {response.text}"
        )


def push_image(client: httpx.Client, repository: str, tag: str, archive: ArchiveImage) -> None:
    """Push config, layers and then the manifest that ties them together."""
    push_blob(client, repository, archive.config)
    for layer in archive.layers:
        push_blob(client, repository, layer)

    response = client.put(
        f"/v2/{repository}/manifests/{tag}",
        content=archive.manifest(),
        headers={"Content-Type": DOCKER_MANIFEST_MEDIA_TYPE},
    )
    if response.status_code != httpx.codes.CREATED:
        raise RegistryError(
            f"pushing manifest {repository}:{tag}: unexpected status {response.status_code}: {response.text}"
        )
