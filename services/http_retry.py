from __future__ import annotations

import time
from typing import Callable

import httpx
from config.defaults import HTTP_RETRY_ATTEMPTS
from config.defaults import HTTP_RETRY_BASE_DELAY_SECONDS
from config.defaults import HTTP_RETRY_MAX_DELAY_SECONDS

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def backoff_delay(attempt: int, *, base: float = HTTP_RETRY_BASE_DELAY_SECONDS, cap: float = HTTP_RETRY_MAX_DELAY_SECONDS) -> float:
    return min(cap, base * (2 ** max(0, attempt - 1)))


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = (response.headers.get("Retry-After") or "").strip()
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    attempts: int = HTTP_RETRY_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
    max_delay: float = HTTP_RETRY_MAX_DELAY_SECONDS,
    **kwargs,
) -> httpx.Response:
    """
    Send a request, retrying transport errors, 429 and 5xx with exponential backoff.

    Non-retryable error statuses raise httpx.HTTPStatusError right away.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            response = client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            if attempt >= attempts:
                raise
            delay = backoff_delay(attempt, cap=max_delay)
            print(f"[HTTP] {method} {url} failed ({e}); retry {attempt}/{attempts - 1} in {delay:.1f}s")
            sleep(delay)
            continue

        if response.status_code in RETRYABLE_STATUS and attempt < attempts:
            retry_after = _retry_after_seconds(response)
            delay = min(max_delay, retry_after) if retry_after is not None else backoff_delay(attempt, cap=max_delay)
            print(f"[HTTP] {method} {url} -> {response.status_code}; retry {attempt}/{attempts - 1} in {delay:.1f}s")
            response.close()
            sleep(delay)
            continue

        response.raise_for_status()
        return response

    raise RuntimeError("unreachable")  # pragma: no cover
