"""
Script: ci_helpers/regtest/tarball.py
What: Reads image tarballs produced by `docker save` / `podman save`.
Doing: Gunzips the archive when needed, reads `manifest.json`, and pulls out config and layer bytes.
Why: Test images are checked in as (optionally gzipped) tarballs and must be pushed into test registries.
Goal: Hand back raw archive bytes for runtimes, or a parsed image for direct pushes.
"""

from __future__ import annotations

import dataclasses
import gzip
import hashlib
import io
import json
import tarfile
import zlib

from ci_helpers.regtest.base import RegistryError, image_name

GZIP_MAGIC = b"\x1f\x8b"

DOCKER_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_CONFIG_MEDIA_TYPE = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER_MEDIA_TYPE = "application/vnd.docker.image.rootfs.diff.tar.gzip"


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def is_gzipped(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def read_tar(path: str) -> bytes:
    """Return the archive bytes, decompressed when the file is gzipped."""
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise RegistryError(f"opening tarball {path!r}: {exc}") from exc

    if not is_gzipped(data):
        return data

    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise RegistryError(f"unzipping tarball {path!r}: {exc}") from exc


@dataclasses.dataclass(frozen=True)
class Blob:
    media_type: str
    data: bytes

    @property
    def digest(self) -> str:
        return sha256_digest(self.data)

    def descriptor(self) -> dict:
        return {"mediaType": self.media_type, "size": len(self.data), "digest": self.digest}


@dataclasses.dataclass(frozen=True)
class ArchiveImage:
    """One image out of a saved archive, with layers ready to push."""

    repo_tags: list[str]
    config: Blob
    layers: list[Blob]

    def manifest(self) -> bytes:
        document = {
            "schemaVersion": 2,
            "mediaType": DOCKER_MANIFEST_MEDIA_TYPE,
            "config": self.config.descriptor(),
            "layers": [layer.descriptor() for layer in self.layers],
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")


def _read_member(tar: tarfile.TarFile, name: str) -> bytes:
    try:
        member = tar.extractfile(name)
    except KeyError as exc:
        raise RegistryError(f"archive is missing {name!r}") from exc
    if member is None:
        raise RegistryError(f"archive entry {name!r} is not a regular file")
    with member:
        return member.read()


def _select_entry(entries: list[dict], image: str | None) -> dict:
    if image:
        wanted = image_name(image)
        for entry in entries:
            if any(image_name(tag) == wanted for tag in entry.get("RepoTags") or []):
                return entry
    if len(entries) == 1:
        return entries[0]
    raise RegistryError(
        f"archive holds {len(entries)} images and none is tagged {image!r}"
    )


def read_image_archive(path: str, *, image: str | None = None) -> ArchiveImage:
    """
    Parse a saved image archive.

    When the archive holds several images, `image` picks the one whose repo
    tag has the same last path segment. Layers are gzipped if they are not
    already, so they can be pushed as regular compressed layers.
    """
    data = read_tar(path)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            try:
                entries = json.loads(_read_member(tar, "manifest.json"))
            except ValueError as exc:
                raise RegistryError(f"decoding manifest.json in {path!r}: {exc}") from exc
            if not isinstance(entries, list) or not entries:
                raise RegistryError(f"manifest.json in {path!r} lists no images")

            entry = _select_entry(entries, image)
            config = Blob(DOCKER_CONFIG_MEDIA_TYPE, _read_member(tar, entry["Config"]))
            layers = []
            for layer_path in entry.get("Layers") or []:
                layer = _read_member(tar, layer_path)
                if not is_gzipped(layer):
                    layer = gzip.compress(layer, mtime=0)
                layers.append(Blob(DOCKER_LAYER_MEDIA_TYPE, layer))
    except tarfile.TarError as exc:
        raise RegistryError(f"reading tarball {path!r}: {exc}") from exc
    except KeyError as exc:
        raise RegistryError(f"manifest.json in {path!r} is missing {exc}") from exc

    return ArchiveImage(repo_tags=list(entry.get("RepoTags") or []), config=config, layers=layers)
