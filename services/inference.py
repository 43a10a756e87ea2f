from __future__ import annotations

import base64
import threading
from typing import Any, Iterator

from config.defaults import DEFAULT_INFERENCE_CONCURRENCY

CHAT_ROLES = ("system", "user", "assistant")


def _sniff_image_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def image_data_url(data: bytes, content_type: str = "") -> str:
    mime = content_type if content_type.startswith("image/") else _sniff_image_type(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def _content_part(part: dict) -> dict:
    kind = str(part.get("type") or "")
    if kind == "text":
        text = part.get("text")
        if not isinstance(text, str):
            raise ValueError("text part needs a string `text`")
        return {"type": "text", "text": text}
    if kind == "image_url":
        url = part.get("url")
        if not isinstance(url, str) or not url:
            raise ValueError("image_url part needs a `url`")
        return {"type": "image_url", "image_url": {"url": url}}
    if kind == "image":
        data = part.get("data")
        raw = getattr(data, "data", data)
        if isinstance(raw, str):
            raw = raw.encode("latin-1")
        if not isinstance(raw, (bytes, bytearray)) or not raw:
            raise ValueError("image part needs blob `data`")
        return {"type": "image_url", "image_url": {"url": image_data_url(bytes(raw), getattr(data, "content_type", ""))}}
    raise ValueError(f"unknown message part type {kind!r}")


def to_chat_messages(messages: list[dict]) -> list[dict]:
    """
    Convert script message tables ({role, content | parts, name?}) into chat-completions
    messages. Raises ValueError on anything malformed.
    """
    out: list[dict] = []
    for idx, msg in enumerate(messages, start=1):
        if not isinstance(msg, dict):
            raise ValueError(f"message {idx} is not a table")
        role = msg.get("role")
        if role not in CHAT_ROLES:
            raise ValueError(f"message {idx} has invalid role {role!r}")
        item: dict[str, Any] = {"role": role}
        if "parts" in msg:
            if role != "user":
                raise ValueError(f"message {idx}: only user messages may carry parts")
            parts = msg.get("parts")
            if isinstance(parts, dict) and not parts:
                parts = []
            if not isinstance(parts, list):
                raise ValueError(f"message {idx}: parts must be an array")
            item["content"] = [_content_part(p) for p in parts if isinstance(p, dict)]
        else:
            content = msg.get("content")
            if not isinstance(content, str):
                raise ValueError(f"message {idx} needs string content")
            item["content"] = content
        name = msg.get("name")
        if isinstance(name, str) and name:
            item["name"] = name
        out.append(item)
    return out


class InferenceService:
    """
    Thin synchronous wrapper over an OpenAI-compatible client.

    Calls run on execution worker threads; a process-wide semaphore bounds how many requests
    are outstanding at once.
    """

    def __init__(self, client, *, fallback_models: list[str] | None = None, max_concurrency: int = DEFAULT_INFERENCE_CONCURRENCY) -> None:
        self.client = client
        self.fallback_models = list(fallback_models or [])
        self.models: list[str] = list(self.fallback_models)
        self._slots = threading.BoundedSemaphore(max(1, int(max_concurrency)))

    def discover_models(self) -> list[str]:
        try:
            listed = [str(m.id) for m in self.client.models.list()]
        except Exception as e:
            print(f"[Inference] model discovery failed; using catalog list: {e}")
            listed = []
        if listed:
            self.models = sorted(set(listed))
        else:
            self.models = list(self.fallback_models)
        print(f"[Inference] {len(self.models)} model(s) available")
        return list(self.models)

    def _request_kwargs(self, model: str, messages: list[dict], seed: int | None) -> dict:
        kwargs: dict[str, Any] = {"model": model, "messages": to_chat_messages(messages)}
        if seed is not None:
            kwargs["seed"] = int(seed)
        return kwargs

    def complete(self, *, model: str, messages: list[dict], seed: int | None = None) -> str:
        kwargs = self._request_kwargs(model, messages, seed)
        with self._slots:
            resp = self.client.chat.completions.create(**kwargs)
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    def stream_chat(self, *, model: str, messages: list[dict], seed: int | None = None) -> Iterator[str]:
        """Yield content deltas; closing the generator closes the upstream response."""
        kwargs = self._request_kwargs(model, messages, seed)
        with self._slots:
            stream = self.client.chat.completions.create(stream=True, **kwargs)
            try:
                for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    text = getattr(delta, "content", None)
                    if text:
                        yield text
            finally:
                stream.close()
