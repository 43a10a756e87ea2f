from __future__ import annotations

import unittest

import httpx

from services.fetch import FetchError
from services.fetch import fetch_bytes


def client_for(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class FetchBytesTests(unittest.TestCase):
    def setUp(self):
        self.sleeps: list[float] = []

    def test_returns_body_and_content_type(self):
        client = client_for(lambda request: httpx.Response(200, content=b"abc", headers={"Content-Type": "image/png; q=1"}))
        self.addCleanup(client.close)
        data, content_type = fetch_bytes(client, "https://example.test/a.png", sleep=self.sleeps.append)
        self.assertEqual(data, b"abc")
        self.assertEqual(content_type, "image/png")

    def test_oversized_body_is_rejected(self):
        client = client_for(lambda request: httpx.Response(200, content=b"x" * 100))
        self.addCleanup(client.close)
        with self.assertRaises(FetchError):
            fetch_bytes(client, "https://example.test/big", max_bytes=10, sleep=self.sleeps.append)

    def test_non_http_urls_are_rejected(self):
        client = client_for(lambda request: httpx.Response(200))
        self.addCleanup(client.close)
        for url in ("file:///etc/passwd", "ftp://example.test/x", "not a url"):
            with self.assertRaises(FetchError):
                fetch_bytes(client, url, sleep=self.sleeps.append)

    def test_server_errors_are_retried(self):
        statuses = [503, 200]

        def handler(request):
            return httpx.Response(statuses.pop(0), content=b"ok")

        client = client_for(handler)
        self.addCleanup(client.close)
        data, _ = fetch_bytes(client, "https://example.test/flaky", sleep=self.sleeps.append)
        self.assertEqual(data, b"ok")
        self.assertEqual(self.sleeps, [0.5])

    def test_not_found_raises_status_error(self):
        client = client_for(lambda request: httpx.Response(404))
        self.addCleanup(client.close)
        with self.assertRaises(httpx.HTTPStatusError):
            fetch_bytes(client, "https://example.test/missing", sleep=self.sleeps.append)
        self.assertEqual(self.sleeps, [])


if __name__ == "__main__":
    unittest.main()
