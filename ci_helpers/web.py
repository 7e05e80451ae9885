"""
Script: ci_helpers/web.py
What: Downloads one URL to one file.
Doing: Streams an HTTP GET through `httpx` and copies the body chunk by chunk.
Why: Steps fetch tool archives and fixtures; a non-200 answer must never be saved as if it were the file.
Goal: Either a complete download or a clear error carrying the status code.
"""

from __future__ import annotations

import logging
import threading

import httpx

from ci_helpers.common import CiHelperError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
CHUNK_SIZE = 64 * 1024
# How often a cancellable download checks on its worker thread.
POLL_INTERVAL_SECONDS = 0.05


class DownloadError(CiHelperError):
    """Raised when a download cannot be fetched or written."""


class DownloadCancelledError(DownloadError):
    """Raised when the cancel event fired mid-download."""


class FailedRequestError(DownloadError):
    """Raised when the server answered with anything other than 200."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"request failed with status {status_code}")


def download_file(
    url: str,
    out: str,
    *,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    cancel: threading.Event | None = None,
) -> None:
    """
    Fetch `url` and write the body to `out`.

    The output file is only created after a 200 response. If copying fails
    part way, whatever was written so far stays on disk.

    With `cancel`, the transfer runs on a worker thread and this call returns
    as soon as the event fires, even if the server has stopped sending.
    """
    if cancel is not None and cancel.is_set():
        raise DownloadCancelledError(f"download of {url} cancelled")

    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    try:
        if cancel is None:
            _download(client, url, out, None)
        else:
            _download_cancellable(client, url, out, cancel)
    finally:
        if owns_client:
            client.close()


def _download_cancellable(
    client: httpx.Client,
    url: str,
    out: str,
    cancel: threading.Event,
) -> None:
    outcome: dict[str, BaseException] = {}

    def worker() -> None:
        try:
            _download(client, url, out, cancel)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    thread = threading.Thread(target=worker, name="download-file", daemon=True)
    thread.start()
    while thread.is_alive():
        thread.join(POLL_INTERVAL_SECONDS)
        if cancel.is_set() and thread.is_alive():
            # The worker exits on its own once the event or the closed client reaches it.
            logger.debug("download of %s cancelled while in flight", url)
            raise DownloadCancelledError(f"download of {url} cancelled")

    if "error" in outcome:
        error = outcome["error"]
        if cancel.is_set() and not isinstance(error, DownloadCancelledError):
            raise DownloadCancelledError(f"download of {url} cancelled") from error
        raise error


def _download(
    client: httpx.Client,
    url: str,
    out: str,
    cancel: threading.Event | None,
) -> None:
    logger.info("downloading %s to %s", url, out)
    try:
        with client.stream("GET", url) as response:
            if response.status_code != httpx.codes.OK:
                raise FailedRequestError(response.status_code)

            try:
                handle = open(out, "wb")
            except OSError as exc:
                raise DownloadError(f"creating file {out!r}: {exc}") from exc

            with handle:
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    if cancel is not None and cancel.is_set():
                        raise DownloadCancelledError(f"download of {url} cancelled")
                    try:
                        handle.write(chunk)
                    except OSError as exc:
                        raise DownloadError(f"copying response to {out!r}: {exc}") from exc
    except httpx.HTTPError as exc:
        raise DownloadError(f"downloading file: {exc}") from exc
