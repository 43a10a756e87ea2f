from __future__ import annotations

import time
from urllib.parse import urlparse

import httpx
from config.defaults import FETCH_MAX_BYTES
from config.defaults import HTTP_RETRY_ATTEMPTS
from services.http_retry import RETRYABLE_STATUS
from services.http_retry import backoff_delay


class FetchError(RuntimeError):
    pass


def _check_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise FetchError(f"only http(s) URLs can be fetched, got {url!r}")


def fetch_bytes(
    http_client: httpx.Client,
    url: str,
    *,
    max_bytes: int = FETCH_MAX_BYTES,
    attempts: int = HTTP_RETRY_ATTEMPTS,
    sleep=time.sleep,
) -> tuple[bytes, str]:
    """
    GET `url` and return (body, content_type), streaming so oversized bodies stop early.
    """
    _check_url(url)
    limit = max(1, int(max_bytes))
    for attempt in range(1, max(1, attempts) + 1):
        try:
            with http_client.stream("GET", url, follow_redirects=True) as response:
                if response.status_code in RETRYABLE_STATUS and attempt < attempts:
                    raise httpx.TransportError(f"status {response.status_code}")
                response.raise_for_status()
                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise FetchError(f"response is {declared} bytes, limit is {limit}")
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > limit:
                        raise FetchError(f"response exceeds {limit} bytes")
                content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
                return (bytes(body), content_type)
        except httpx.TransportError as e:
            if attempt >= attempts:
                raise
            delay = backoff_delay(attempt)
            print(f"[HTTP] GET {url} failed ({e}); retry {attempt}/{attempts - 1} in {delay:.1f}s")
            sleep(delay)
    raise FetchError(f"could not fetch {url}")
