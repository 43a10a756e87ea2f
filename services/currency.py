from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from config.defaults import CURRENCY_CACHE_TTL_SECONDS
from config.defaults import CURRENCY_INTERMEDIATES
from config.defaults import CURRENCY_MIN_REQUEST_INTERVAL_SECONDS
from config.defaults import EXCHANGE_API_URL
from services.http_retry import request_with_retry


class CurrencyError(RuntimeError):
    pass


@dataclass(slots=True)
class _CachedRates:
    rates: dict[str, float]
    fetched_at: float


class CurrencyConverter:
    """
    Exchange rates from ExchangeRate-API, cached per base currency.

    Rates live for `cache_ttl` seconds and a base is requested at most once per
    `min_request_interval`. A lookup tries the direct rate, then the inverse of the opposite
    base, then a cross rate through each intermediate currency, only fetching when none of the
    cached tables can answer.
    """

    def __init__(
        self,
        http_client,
        *,
        api_key: str,
        url_template: str = EXCHANGE_API_URL,
        cache_ttl: float = CURRENCY_CACHE_TTL_SECONDS,
        min_request_interval: float = CURRENCY_MIN_REQUEST_INTERVAL_SECONDS,
        intermediates: tuple[str, ...] = CURRENCY_INTERMEDIATES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.http_client = http_client
        self.api_key = str(api_key or "").strip()
        self.url_template = url_template
        self.cache_ttl = float(cache_ttl)
        self.min_request_interval = float(min_request_interval)
        self.intermediates = tuple(c.upper() for c in intermediates)
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, _CachedRates] = {}
        self._last_request: dict[str, float] = {}

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        print("[Currency] rate cache cleared")

    def _fresh(self, base: str) -> dict[str, float] | None:
        entry = self._cache.get(base)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at > self.cache_ttl:
            return None
        return entry.rates

    def _fetch_locked(self, base: str) -> dict[str, float] | None:
        """Fetch rates for `base` if the request budget allows; caller holds the lock."""
        now = self._clock()
        last = self._last_request.get(base)
        if last is not None and now - last < self.min_request_interval:
            stale = self._cache.get(base)
            return stale.rates if stale is not None else None
        if not self.api_key:
            raise CurrencyError("no exchange API key configured")

        self._last_request[base] = now
        url = self.url_template.format(api_key=self.api_key, base=base)
        response = request_with_retry(self.http_client, "GET", url)
        payload = response.json()
        if not isinstance(payload, dict) or payload.get("result") != "success":
            reason = payload.get("error-type") if isinstance(payload, dict) else "bad payload"
            raise CurrencyError(f"exchange API error for {base}: {reason}")
        raw = payload.get("conversion_rates") or {}
        rates = {str(k).upper(): float(v) for k, v in raw.items() if isinstance(v, (int, float))}
        self._cache[base] = _CachedRates(rates=rates, fetched_at=self._clock())
        print(f"[Currency] fetched {len(rates)} rates for {base}")
        return rates

    def _lookup_cached(self, src: str, dst: str) -> float | None:
        direct = self._fresh(src)
        if direct is not None and dst in direct:
            return direct[dst]
        inverse = self._fresh(dst)
        if inverse is not None and inverse.get(src):
            return 1.0 / inverse[src]
        for mid in self.intermediates:
            table = self._fresh(mid)
            if table is not None and table.get(src) and dst in table:
                return table[dst] / table[src]
        return None

    def rate(self, src: str, dst: str) -> float:
        src = str(src or "").strip().upper()
        dst = str(dst or "").strip().upper()
        if not src or not dst:
            raise CurrencyError("currency codes are required")
        if src == dst:
            return 1.0

        with self._lock:
            cached = self._lookup_cached(src, dst)
            if cached is not None:
                return cached

            for base in (src, *[m for m in self.intermediates if m not in (src, dst)]):
                rates = self._fetch_locked(base)
                if not rates:
                    continue
                if base == src and dst in rates:
                    return rates[dst]
                if base != src and rates.get(src) and dst in rates:
                    return rates[dst] / rates[src]

        raise CurrencyError(f"no exchange rate available for {src} -> {dst}")

    def convert(self, amount: float, src: str, dst: str) -> float:
        return float(amount) * self.rate(src, dst)
