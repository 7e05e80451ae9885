"""
Script: ci_helpers/regtest/container.py
What: A throwaway registry running in a podman/docker container.
Doing: Pulls the registry image, runs it with a published port (optionally HTTPS with a generated cert),
       waits for the port, then loads/tags/pushes image tarballs through the runtime CLI.
Why: Integration tests need a real registry that the runtime itself can push to.
Goal: `stop()` leaves no container, no pushed images and no cert files behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from ci_helpers.command import Command, CommandError
from ci_helpers.regtest.base import (
    Registry,
    RegistryConfig,
    RegistryError,
    RegistryNotReadyError,
    RegistryState,
    image_name,
    parse_reference,
    ping,
    wait_until,
)
from ci_helpers.regtest.certs import CERT_FILE_NAME, KEY_FILE_NAME, generate_certs
from ci_helpers.regtest.tarball import read_tar

logger = logging.getLogger(__name__)

HTTP_CONTAINER_PORT = 5000
HTTPS_CONTAINER_PORT = 443


def parse_port(raw: str) -> int:
    """
    Read the host port from `<runtime> port <name>` output.

    Example line: `5000/tcp -> 0.0.0.0:43127`. Docker may add an IPv6 line
    with the same port; only the first line is used.
    """
    lines = [line.strip() for line in raw.strip().splitlines() if line.strip()]
    if not lines or ":" not in lines[0]:
        raise RegistryError(f"unparsable port string {raw!r}")
    try:
        return int(lines[0].rsplit(":", 1)[1])
    except ValueError as exc:
        raise RegistryError(f"unparsable port string {raw!r}") from exc


class ContainerRegistry(Registry):
    """Registry backed by the `registry:2` image and the host's container runtime."""

    def __init__(self, config: RegistryConfig | None = None, **options) -> None:
        super().__init__(config, **options)
        self._loaded_images: list[str] = []
        self._container_started = False
        self._cert_dir: str | None = None

    @property
    def runtime(self) -> str:
        return self.config.runtime

    @property
    def loaded_images(self) -> list[str]:
        return list(self._loaded_images)

    def _run_runtime(self, args: list[str], *, action: str, stdin: bytes | None = None) -> str:
        command = Command(self.runtime, args=args, stdin=stdin, combined_output=True)
        try:
            command.run()
        except CommandError as exc:
            raise RegistryError(f"{action}: {exc}") from exc

        if not command.success:
            raise RegistryError(f"{action}: {command.output.strip()}") from command.error
        return command.output

    def _start(self) -> None:
        if not self.runtime:
            raise RegistryError("no container runtime available")

        self.state = RegistryState.PULLING
        self._run_runtime(["pull", self.config.image], action="pulling registry image")

        self.state = RegistryState.STARTING
        self._run_container()

        self.state = RegistryState.WAITING_READY
        output = self._run_runtime(["port", self.config.name], action="retrieving actual port")
        self._port = parse_port(output)

        if not wait_until(
            lambda: ping(self.hostname, self._port),
            timeout=self.config.ready_timeout,
            interval=self.config.ready_interval,
        ):
            raise RegistryNotReadyError(
                f"registry {self.config.name} not reachable on port {self._port} "
                f"after {self.config.ready_timeout}s"
            )

    def _run_container(self) -> None:
        container_port = HTTPS_CONTAINER_PORT if self.tls else HTTP_CONTAINER_PORT
        publish = str(container_port)
        if self.config.port:
            publish = f"{self.config.port}:{container_port}"

        args = ["run", "--rm", "-d", "-p", publish, "--name", self.config.name]

        if self.tls:
            self._cert_dir = tempfile.mkdtemp(prefix="regtest-certs-")
            generate_certs(Path(self._cert_dir), ["localhost", "127.0.0.1"])
            args.extend(
                [
                    "-v",
                    f"{self._cert_dir}:/certs",
                    "-e",
                    f"REGISTRY_HTTP_ADDR=0.0.0.0:{HTTPS_CONTAINER_PORT}",
                    "-e",
                    f"REGISTRY_HTTP_TLS_CERTIFICATE=/certs/{CERT_FILE_NAME}",
                    "-e",
                    f"REGISTRY_HTTP_TLS_KEY=/certs/{KEY_FILE_NAME}",
                ]
            )

        args.append(self.config.image)
        self._run_runtime(args, action="starting registry")
        self._container_started = True
        logger.info("started registry container %s", self.config.name)

    def _teardown(self) -> list[Exception]:
        errors: list[Exception] = []

        if self._container_started:
            try:
                self._run_runtime(["stop", self.config.name], action="stopping registry")
            except RegistryError as exc:
                errors.append(exc)
            self._container_started = False

        for image in self._loaded_images:
            try:
                self._run_runtime(["image", "rm", image], action=f"removing loaded image {image!r}")
            except RegistryError as exc:
                errors.append(exc)
        self._loaded_images = []

        if self._cert_dir is not None:
            try:
                shutil.rmtree(self._cert_dir)
            except OSError as exc:
                errors.append(RegistryError(f"removing certificates {self._cert_dir}: {exc}"))
            self._cert_dir = None

        return errors

    def _resolve(self, image: str) -> tuple[str, str] | None:
        # `load` pushes by last path segment only, so lookups do the same.
        _, repository, reference = parse_reference(image)
        return image_name(repository), reference

    def _uses_podman(self) -> bool:
        return os.path.basename(self.runtime).startswith("podman")

    def load(self, image: str, tar_file: str) -> None:
        """
        Load `tar_file` into the runtime and push it to this registry.

        The image is re-tagged as `<host>/<last segment of image>`; the tagged
        name is removed from the runtime again on `stop()`.
        """
        data = read_tar(tar_file)
        self._run_runtime(["load"], stdin=data, action=f"loading tarball {tar_file!r}")

        tagged_image = f"{self.host}/{image_name(image)}"
        self._run_runtime(["tag", image, tagged_image], action=f"tagging image {image!r}")
        self._loaded_images.append(tagged_image)

        push_args = ["push"]
        if self._uses_podman():
            # docker already trusts plain-HTTP registries on localhost.
            push_args.append("--tls-verify=false")
        push_args.append(tagged_image)
        self._run_runtime(push_args, action=f"pushing image {tagged_image!r}")
        logger.info("pushed %s", tagged_image)
