from __future__ import annotations

import os
import re


def parse_id_set(raw: str | None) -> set[int]:
    if not raw:
        return set()
    out: set[int] = set()
    for tok in re.split(r"[\s,;]+", raw.strip()):
        if not tok:
            continue
        if re.fullmatch(r"\d{8,22}", tok):
            out.add(int(tok))
    return out


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"[CFG] invalid {name}={raw!r}; falling back to {default}")
        return default
    if minimum is not None and value < minimum:
        print(f"[CFG] {name}={value} is below {minimum}; falling back to {default}")
        return default
    return value


def env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        print(f"[CFG] invalid {name}={raw!r}; falling back to {default}")
        return default
    if minimum is not None and value < minimum:
        print(f"[CFG] {name}={value} is below {minimum}; falling back to {default}")
        return default
    return value
