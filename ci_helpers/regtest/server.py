"""
Script: ci_helpers/regtest/server.py
What: A tiny in-memory registry speaking the subset of the registry HTTP API v2 tests need.
Doing: Serves base/catalog/tags endpoints, manifest GET/HEAD/PUT, blob GET/HEAD and blob uploads
       as a FastAPI app backed by `RegistryStore`, run by uvicorn on a background thread.
Why: Lets registry tests run where no container runtime is installed.
Goal: Behave like `registry:2` for push, existence checks and listing; nothing is persisted.
"""

from __future__ import annotations

import json
import logging
import re
import socket
import threading
import uuid

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from ci_helpers.regtest.base import RegistryError, wait_until
from ci_helpers.regtest.tarball import sha256_digest

logger = logging.getLogger(__name__)

API_VERSION_HEADER = "Docker-Distribution-API-Version"
STARTUP_TIMEOUT_SECONDS = 10.0
SHUTDOWN_TIMEOUT_SECONDS = 5.0

_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")


class RegistryStore:
    """Blobs, manifests and in-flight uploads for every repository."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.blobs: dict[str, bytes] = {}
        # (repository, tag or digest) -> (media type, body)
        self.manifests: dict[tuple[str, str], tuple[str, bytes]] = {}
        self.uploads: dict[str, bytearray] = {}

    def repositories(self) -> list[str]:
        with self.lock:
            return sorted({repository for repository, _ in self.manifests})

    def tags(self, repository: str) -> list[str] | None:
        with self.lock:
            refs = [ref for repo, ref in self.manifests if repo == repository]
        if not refs:
            return None
        return sorted(ref for ref in refs if not ref.startswith("sha256:"))

    def put_manifest(self, repository: str, reference: str, media_type: str, body: bytes) -> str:
        digest = sha256_digest(body)
        with self.lock:
            self.manifests[(repository, reference)] = (media_type, body)
            self.manifests[(repository, digest)] = (media_type, body)
        return digest

    def get_manifest(self, repository: str, reference: str) -> tuple[str, bytes] | None:
        with self.lock:
            return self.manifests.get((repository, reference))

    def put_blob(self, data: bytes) -> str:
        digest = sha256_digest(data)
        with self.lock:
            self.blobs[digest] = data
        return digest

    def get_blob(self, digest: str) -> bytes | None:
        with self.lock:
            return self.blobs.get(digest)

    def start_upload(self) -> str:
        upload_id = str(uuid.uuid4())
        with self.lock:
            self.uploads[upload_id] = bytearray()
        return upload_id

    def append_upload(self, upload_id: str, data: bytes) -> int | None:
        with self.lock:
            buffer = self.uploads.get(upload_id)
            if buffer is None:
                return None
            buffer.extend(data)
            return len(buffer)

    def finish_upload(self, upload_id: str) -> bytes | None:
        with self.lock:
            buffer = self.uploads.pop(upload_id, None)
        return None if buffer is None else bytes(buffer)


def registry_error(status_code: int, code: str, message: str) -> HTTPException:
    """An `HTTPException` carrying the registry's `{"errors": [...]}` document."""
    return HTTPException(
        status_code=status_code,
        detail={"errors": [{"code": code, "message": message}]},
    )


def create_app(store: RegistryStore) -> FastAPI:
    """Build the v2 API routes over `store`."""
    app = FastAPI(title="regtest registry", docs_url=None, redoc_url=None, openapi_url=None)

    @app.exception_handler(StarletteHTTPException)
    async def registry_error_document(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail
        if not isinstance(detail, dict):
            code = "NOT_FOUND" if exc.status_code == 404 else "UNSUPPORTED"
            detail = {"errors": [{"code": code, "message": str(detail)}]}
        return JSONResponse(detail, status_code=exc.status_code)

    @app.middleware("http")
    async def api_version_header(request: Request, call_next):
        response = await call_next(request)
        response.headers[API_VERSION_HEADER] = "registry/2.0"
        return response

    @app.api_route("/v2/", methods=["GET", "HEAD"])
    async def base() -> JSONResponse:
        return JSONResponse({})

    @app.get("/v2/_catalog")
    async def catalog() -> JSONResponse:
        return JSONResponse({"repositories": store.repositories()})

    @app.get("/v2/{name:path}/tags/list")
    async def tags(name: str) -> JSONResponse:
        found = store.tags(name)
        if found is None:
            raise registry_error(404, "NAME_UNKNOWN", f"repository {name} not known")
        return JSONResponse({"name": name, "tags": found})

    @app.api_route("/v2/{name:path}/manifests/{reference}", methods=["GET", "HEAD"])
    async def get_manifest(name: str, reference: str) -> Response:
        stored = store.get_manifest(name, reference)
        if stored is None:
            raise registry_error(404, "MANIFEST_UNKNOWN", f"manifest {name}:{reference} not known")
        media_type, body = stored
        return Response(body, media_type=media_type, headers={"Docker-Content-Digest": sha256_digest(body)})

    @app.put("/v2/{name:path}/manifests/{reference}")
    async def put_manifest(name: str, reference: str, request: Request) -> Response:
        body = await request.body()
        try:
            document = json.loads(body)
        except ValueError as exc:
            raise registry_error(400, "MANIFEST_INVALID", "manifest is not JSON") from exc
        if not isinstance(document, dict):
            raise registry_error(400, "MANIFEST_INVALID", "manifest is not a JSON object")

        if reference.startswith("sha256:") and reference != sha256_digest(body):
            raise registry_error(400, "DIGEST_INVALID", "digest does not match body")

        referenced = [document.get("config") or {}] + list(document.get("layers") or [])
        for descriptor in referenced:
            digest = descriptor.get("digest")
            if digest and store.get_blob(digest) is None:
                raise registry_error(400, "MANIFEST_BLOB_UNKNOWN", f"blob {digest} not known")

        media_type = request.headers.get("content-type") or document.get("mediaType") or ""
        digest = store.put_manifest(name, reference, media_type, body)
        return Response(
            status_code=201,
            headers={"Location": f"/v2/{name}/manifests/{digest}", "Docker-Content-Digest": digest},
        )

    @app.post("/v2/{name:path}/blobs/uploads/")
    async def start_upload(name: str, request: Request) -> Response:
        body = await request.body()
        digest = request.query_params.get("digest")
        if digest is not None:
            return commit_blob(name, digest, body)

        upload_id = store.start_upload()
        store.append_upload(upload_id, body)
        return upload_status(name, upload_id, len(body))

    @app.patch("/v2/{name:path}/blobs/uploads/{upload_id}")
    async def patch_upload(name: str, upload_id: str, request: Request) -> Response:
        size = store.append_upload(upload_id, await request.body())
        if size is None:
            raise registry_error(404, "BLOB_UPLOAD_UNKNOWN", f"upload {upload_id} not known")
        return upload_status(name, upload_id, size)

    @app.put("/v2/{name:path}/blobs/uploads/{upload_id}")
    async def finish_upload(name: str, upload_id: str, request: Request) -> Response:
        if store.append_upload(upload_id, await request.body()) is None:
            raise registry_error(404, "BLOB_UPLOAD_UNKNOWN", f"upload {upload_id} not known")
        digest = request.query_params.get("digest")
        if digest is None:
            raise registry_error(400, "DIGEST_INVALID", "digest parameter missing")
        return commit_blob(name, digest, store.finish_upload(upload_id) or b"")

    @app.api_route("/v2/{name:path}/blobs/{digest}", methods=["GET", "HEAD"])
    async def get_blob(name: str, digest: str) -> Response:
        data = store.get_blob(digest) if _DIGEST_RE.match(digest) else None
        if data is None:
            raise registry_error(404, "BLOB_UNKNOWN", f"blob {digest} not known")
        return Response(data, media_type="application/octet-stream", headers={"Docker-Content-Digest": digest})

    def upload_status(name: str, upload_id: str, size: int) -> Response:
        return Response(
            status_code=202,
            headers={
                "Location": f"/v2/{name}/blobs/uploads/{upload_id}",
                "Docker-Upload-UUID": upload_id,
                "Range": f"0-{max(size - 1, 0)}",
            },
        )

    def commit_blob(name: str, expected_digest: str, data: bytes) -> Response:
        if sha256_digest(data) != expected_digest:
            raise registry_error(400, "DIGEST_INVALID", "digest does not match upload")
        digest = store.put_blob(data)
        return Response(
            status_code=201,
            headers={"Location": f"/v2/{name}/blobs/{digest}", "Docker-Content-Digest": digest},
        )

    return app


class RegistryServer:
    """
    Runs the registry app with uvicorn on a daemon thread.

    The listening socket is bound before the thread starts, so `start()` knows
    the real port even when `port=0`. TLS is on when both `certfile` and
    `keyfile` are given.
    """

    def __init__(
        self,
        store: RegistryStore | None = None,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        certfile: str | None = None,
        keyfile: str | None = None,
    ) -> None:
        self.store = store or RegistryStore()
        self.host = host
        self.port = port
        self.certfile = certfile
        self.keyfile = keyfile
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> int:
        """Bind, start serving and return the bound port."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise RegistryError(f"starting registry server: {exc}") from exc
        self._socket = sock
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            create_app(self.store),
            host=self.host,
            port=self.port,
            ssl_certfile=self.certfile,
            ssl_keyfile=self.keyfile,
            lifespan="off",
            log_config=None,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=1,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [sock]},
            name=f"regtest-{self.port}",
            daemon=True,
        )
        self._thread.start()

        server, thread = self._server, self._thread
        wait_until(
            lambda: server.started or not thread.is_alive(),
            timeout=STARTUP_TIMEOUT_SECONDS,
            interval=0.05,
        )
        if not server.started:
            self.stop()
            raise RegistryError(f"registry server on {self.host}:{self.port} did not start")

        logger.debug("registry server listening on %s:%s", self.host, self.port)
        return self.port

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(SHUTDOWN_TIMEOUT_SECONDS)
        if self._socket is not None:
            self._socket.close()
        self._server = None
        self._thread = None
        self._socket = None
