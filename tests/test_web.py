"""
Script: tests/test_web.py
What: Tests for `download_file`.
Doing: Serves canned responses through `httpx.MockTransport` and checks what lands on disk.
Why: A failed request must never leave a file that looks like a real download.
Goal: Keep status handling and file writing predictable.
"""

from __future__ import annotations

import os
import socket
import tempfile
import threading
import time
import unittest

import httpx

from ci_helpers.web import (
    DownloadCancelledError,
    DownloadError,
    FailedRequestError,
    download_file,
)

PAYLOAD = bytes(range(256)) * 1024


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class DownloadFileTests(unittest.TestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.dir = temp_dir.name
        self.out = os.path.join(self.dir, "download.bin")

    def test_writes_identical_content_on_200(self) -> None:
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append((request.method, str(request.url)))
            return httpx.Response(200, content=PAYLOAD)

        with mock_client(handler) as client:
            download_file("https://example.com/tool.tar.gz", self.out, client=client)

        self.assertEqual(requested, [("GET", "https://example.com/tool.tar.gz")])
        with open(self.out, "rb") as handle:
            self.assertEqual(handle.read(), PAYLOAD)

    def test_non_200_raises_status_and_writes_nothing(self) -> None:
        for status in (404, 500, 204):
            with self.subTest(status=status):
                with mock_client(lambda request: httpx.Response(status, text="nope")) as client:
                    with self.assertRaises(FailedRequestError) as ctx:
                        download_file("https://example.com/missing", self.out, client=client)

                self.assertEqual(ctx.exception.status_code, status)
                self.assertEqual(str(ctx.exception), f"request failed with status {status}")
                self.assertFalse(os.path.exists(self.out))

    def test_unwritable_destination_raises_promptly(self) -> None:
        out = os.path.join(self.dir, "missing-dir", "download.bin")

        started = time.monotonic()
        with mock_client(lambda request: httpx.Response(200, content=PAYLOAD)) as client:
            with self.assertRaises(DownloadError) as ctx:
                download_file("https://example.com/tool", out, client=client)

        self.assertNotIsInstance(ctx.exception, FailedRequestError)
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertLess(time.monotonic() - started, 5)

    def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with mock_client(handler) as client:
            with self.assertRaises(DownloadError) as ctx:
                download_file("https://example.com/tool", self.out, client=client)

        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)
        self.assertFalse(os.path.exists(self.out))

    def test_cancelled_download_stops(self) -> None:
        cancel = threading.Event()
        cancel.set()

        with mock_client(lambda request: httpx.Response(200, content=PAYLOAD)) as client:
            with self.assertRaises(DownloadCancelledError):
                download_file("https://example.com/tool", self.out, client=client, cancel=cancel)

    def test_download_with_unset_cancel_completes(self) -> None:
        cancel = threading.Event()
        with mock_client(lambda request: httpx.Response(200, content=PAYLOAD)) as client:
            download_file("https://example.com/tool", self.out, client=client, cancel=cancel)

        with open(self.out, "rb") as handle:
            self.assertEqual(handle.read(), PAYLOAD)

    def test_worker_errors_reach_the_caller(self) -> None:
        cancel = threading.Event()
        with mock_client(lambda request: httpx.Response(404)) as client:
            with self.assertRaises(FailedRequestError):
                download_file("https://example.com/tool", self.out, client=client, cancel=cancel)

    def test_cancel_interrupts_stalled_transfer(self) -> None:
        port, release = stalled_server(self)
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        self.addCleanup(timer.cancel)

        started = time.monotonic()
        timer.start()
        with self.assertRaises(DownloadCancelledError):
            download_file(f"http://127.0.0.1:{port}/tool", self.out, timeout=5.0, cancel=cancel)

        self.assertLess(time.monotonic() - started, 2.0)
        release.set()


def stalled_server(test_case: unittest.TestCase) -> tuple[int, threading.Event]:
    """Serve 200 headers and a few body bytes, then hold the connection open."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    release = threading.Event()

    def serve() -> None:
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            conn.recv(65536)
            conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Length: 1000\r\n\r\n" + b"0123456789")
            release.wait(10)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    test_case.addCleanup(listener.close)
    test_case.addCleanup(release.set)
    return listener.getsockname()[1], release


if __name__ == "__main__":
    unittest.main()
