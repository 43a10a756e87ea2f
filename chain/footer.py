from __future__ import annotations

import math
import re
from typing import Any

FOOTER_MARKER = "-# @"
FOOTER_PREFIX = "\n\n" + FOOTER_MARKER

FIELD_SEP = "|"
KV_SEP = "="
# whole encoded paragraph; Discord messages hold 2000 characters
MAX_FOOTER_LEN = 1000

_ESCAPES = {
    "\\": "\\\\",
    FIELD_SEP: "\\p",
    KV_SEP: "\\e",
    "\n": "\\n",
    "\r": "\\r",
}
_UNESCAPES = {"\\": "\\", "p": FIELD_SEP, "e": KV_SEP, "n": "\n", "r": "\r"}

_RESERVED_KEY_CHARS = re.compile(r"[\\|=\r\n]")
_INT_RE = re.compile(r"^-?\d+$")


class MalformedFooter(ValueError):
    pass


def _escape(value: str) -> str:
    # backslash first, then the separators
    out = value.replace("\\", _ESCAPES["\\"])
    for ch in (FIELD_SEP, KV_SEP, "\n", "\r"):
        out = out.replace(ch, _ESCAPES[ch])
    return out


def _unescape(value: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= len(value):
            raise MalformedFooter("dangling escape")
        code = value[i + 1]
        if code not in _UNESCAPES:
            raise MalformedFooter(f"unknown escape \\{code}")
        out.append(_UNESCAPES[code])
        i += 2
    return "".join(out)


def validate_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise ValueError(f"footer key must be a non-empty string, got {key!r}")
    if _RESERVED_KEY_CHARS.search(key):
        raise ValueError(f"footer key {key!r} contains a reserved character")
    return key


def _encode_value(key: str, value: Any) -> str:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "b:" + ("1" if value else "0")
    if isinstance(value, int):
        return f"i:{value}"
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"footer value for {key!r} must be finite")
        return "n:" + repr(value)
    if isinstance(value, str):
        return "s:" + _escape(value)
    raise ValueError(f"footer value for {key!r} has unsupported type {type(value).__name__}")


def encode_fields(record: dict) -> str:
    parts = []
    for key in sorted(record):
        validate_key(key)
        parts.append(f"{key}{KV_SEP}{_encode_value(key, record[key])}")
    return FIELD_SEP.join(parts)


def encode(record: dict) -> str:
    """
    Serialize a record as a trailing footer paragraph.

    Keys are sorted so equal records always encode identically. Raises ValueError when the
    result would be longer than MAX_FOOTER_LEN.
    """
    out = FOOTER_PREFIX + encode_fields(record)
    if len(out) > MAX_FOOTER_LEN:
        raise ValueError(f"footer is {len(out)} characters; the limit is {MAX_FOOTER_LEN}")
    return out


def fit(record: dict, max_len: int = MAX_FOOTER_LEN) -> tuple[dict, list[str]]:
    """
    Drop the longest string values until the encoded record fits in `max_len`.

    Returns (record, dropped keys). Numbers and booleans are never dropped; if they alone do
    not fit, ValueError is raised.
    """
    kept = dict(record)
    dropped: list[str] = []
    while len(FOOTER_PREFIX + encode_fields(kept)) > max_len:
        strings = [k for k, v in kept.items() if isinstance(v, str)]
        if not strings:
            raise ValueError(f"footer does not fit in {max_len} characters")
        longest = max(strings, key=lambda k: (len(kept[k]), k))
        del kept[longest]
        dropped.append(longest)
    return (kept, dropped)


def _footer_bounds(text: str) -> tuple[int, int] | None:
    idx = text.rfind(FOOTER_PREFIX)
    if idx != -1:
        start, payload = idx, idx + len(FOOTER_PREFIX)
    elif text.startswith(FOOTER_MARKER):
        # Discord trims leading whitespace from footer-only messages
        start, payload = 0, len(FOOTER_MARKER)
    else:
        return None
    # only a terminal paragraph counts as a footer
    if "\n" in text[payload:]:
        return None
    return (start, payload)


def _decode_value(tag: str, raw: str) -> Any:
    if tag == "s":
        return _unescape(raw)
    if tag == "i":
        if not _INT_RE.match(raw):
            raise MalformedFooter(f"bad integer {raw!r}")
        return int(raw)
    if tag == "n":
        value = float(raw)
        if not math.isfinite(value):
            raise MalformedFooter(f"bad decimal {raw!r}")
        return value
    if tag == "b":
        if raw not in {"0", "1"}:
            raise MalformedFooter(f"bad boolean {raw!r}")
        return raw == "1"
    raise MalformedFooter(f"unknown type tag {tag!r}")


def decode_fields(payload: str) -> dict | None:
    if payload == "":
        return {}
    record: dict[str, Any] = {}
    for field in payload.split(FIELD_SEP):
        key, sep, typed = field.partition(KV_SEP)
        if not sep or not key or len(typed) < 2 or typed[1] != ":":
            return None
        try:
            record[key] = _decode_value(typed[0], typed[2:])
        except ValueError:
            # drop just this key
            continue
    return record


def decode(text: str | None) -> dict | None:
    """
    Return the footer record carried by `text`, or None.

    Never raises: absent or structurally broken footers yield None, and a field with an
    unknown type tag or an unreadable value is skipped.
    """
    if not text:
        return None
    bounds = _footer_bounds(text)
    if bounds is None:
        return None
    return decode_fields(text[bounds[1]:])


def strip(text: str | None) -> str:
    """
    Remove the trailing footer paragraph. Stacked footers are all removed; a trailing
    subtext line that does not decode is kept.
    """
    text = text or ""
    bounds = _footer_bounds(text)
    while bounds is not None and decode_fields(text[bounds[1]:]) is not None:
        text = text[:bounds[0]]
        bounds = _footer_bounds(text)
    return text


def split(text: str | None) -> tuple[str, str]:
    """(body, footer part) with the footer part empty when there is none."""
    text = text or ""
    body = strip(text)
    return (body, text[len(body):])
