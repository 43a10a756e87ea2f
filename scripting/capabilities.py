from __future__ import annotations

import functools
import random
import threading
from typing import Any, Callable

import httpx
import openai
from chain import footer
from config.defaults import MAX_SLEEP_MS
from config.defaults import SEED_MAX
from config.defaults import SEED_MIN
from scripting.emitter import OutputEmitter
from scripting.errors import CapabilityError
from scripting.errors import ExecutionCancelled
from scripting.runtime import Blob
from scripting.runtime import LuaError
from scripting.runtime import as_list
from scripting.runtime import from_lua
from scripting.runtime import is_lua_function
from scripting.runtime import is_lua_table
from scripting.runtime import to_lua
from scripting.streaming import drive_stream
from services.comfy import DEFAULT_NEGATIVE
from services.comfy import ComfyError
from services.comfy import ImageRequest
from services.currency import CurrencyError
from services.fetch import FetchError
from services.fetch import fetch_bytes

# Wraps a host sink so that `output(a, b)` joins tostring'd arguments with a tab.
TOSTRING_JOIN = r"""
local sink = ...
return function(...)
    local n = select("#", ...)
    local parts = {}
    for i = 1, n do
        parts[i] = tostring((select(i, ...)))
    end
    sink(table.concat(parts, "\t"))
end
"""

_UPSTREAM_ERRORS = (httpx.HTTPError, openai.OpenAIError, CurrencyError, ComfyError, FetchError)


def capability(name: str):
    """Check cancellation before the call and turn host failures into CapabilityError."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args):
            self.check_cancelled()
            try:
                return fn(self, *args)
            except (CapabilityError, ExecutionCancelled, LuaError):
                raise
            except _UPSTREAM_ERRORS as e:
                raise CapabilityError(name, str(e) or type(e).__name__) from e
            except (ValueError, TypeError) as e:
                raise CapabilityError(name, str(e)) from e

        return wrapper

    return decorator


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class CapabilityTable:
    """
    Host functions bound into one execution's Lua globals.

    Every function that touches the outside world runs on the execution's worker thread and
    blocks it; the table holds no state beyond the execution it belongs to.
    """

    def __init__(
        self,
        services,
        emitter: OutputEmitter,
        *,
        cancel_event: threading.Event | None = None,
        rng: random.Random | None = None,
        register_command: Callable | None = None,
    ) -> None:
        self.services = services
        self.emitter = emitter
        self.cancel_event = cancel_event or threading.Event()
        self.rng = rng or random.Random()
        self.register_command = register_command
        self.lua = None

    # helpers

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ExecutionCancelled()

    def _options(self, name: str, value: Any) -> dict:
        if not is_lua_table(value):
            raise CapabilityError(name, "expects a single options table")
        opts = from_lua(value)
        if isinstance(opts, list):
            raise CapabilityError(name, "expects named options, got an array")
        return opts

    def _seed(self, name: str, opts: dict) -> int:
        seed = opts.get("seed")
        if seed is None:
            return self.random_seed()
        if isinstance(seed, float) and seed.is_integer():
            seed = int(seed)
        if not _is_int(seed):
            raise CapabilityError(name, "`seed` must be an integer")
        return seed

    def _string(self, name: str, opts: dict, key: str, *, required: bool = True) -> str | None:
        value = opts.get(key)
        if value is None and not required:
            return None
        if not isinstance(value, str) or (required and not value):
            raise CapabilityError(name, f"`{key}` must be a non-empty string")
        return value

    def _number(self, name: str, opts: dict, key: str, *, required: bool = True, integer: bool = False):
        value = opts.get(key)
        if value is None and not required:
            return None
        if integer and isinstance(value, float) and value.is_integer():
            value = int(value)
        if not (_is_int(value) if integer else _is_number(value)):
            kind = "an integer" if integer else "a number"
            raise CapabilityError(name, f"`{key}` must be {kind}")
        return value

    def _table(self, value: Any) -> Any:
        return to_lua(self.lua, value)

    # output

    def output(self, text: str) -> str:
        return self.emitter.output(text)

    def print_line(self, text: str) -> None:
        self.emitter.print_line(text)

    @capability("attach")
    def attach(self, filename=None, data=None) -> None:
        if not isinstance(filename, str) or not filename.strip():
            raise CapabilityError("attach", "`filename` must be a non-empty string")
        if isinstance(data, Blob):
            raw = data.data
        elif isinstance(data, str):
            raw = data.encode("utf-8")
        elif isinstance(data, (bytes, bytearray)):
            raw = bytes(data)
        else:
            raise CapabilityError("attach", "`data` must be a blob or a string")
        self.emitter.attach(filename.strip(), raw)

    @capability("sleep")
    def sleep(self, ms=None) -> None:
        if not _is_number(ms) or ms < 0:
            raise CapabilityError("sleep", "expects a non-negative number of milliseconds")
        if self.cancel_event.wait(min(float(ms), MAX_SLEEP_MS) / 1000.0):
            raise ExecutionCancelled()

    def random_seed(self) -> int:
        return self.rng.randint(SEED_MIN, SEED_MAX)

    # llm

    def _message(self, role: str, content: Any) -> Any:
        name = f"llm.{role}"
        if isinstance(content, str):
            return self._table({"role": role, "content": content})
        if not is_lua_table(content):
            raise CapabilityError(name, "expects a string or a table")
        value = from_lua(content)
        if isinstance(value, list):
            if role != "user":
                raise CapabilityError(name, "only user messages accept content parts")
            return self._table({"role": role, "parts": value})
        text = value.get("content")
        if not isinstance(text, str):
            raise CapabilityError(name, "`content` must be a string")
        msg = {"role": role, "content": text}
        if isinstance(value.get("name"), str):
            msg["name"] = value["name"]
        return self._table(msg)

    def llm_system(self, content=None):
        return self._message("system", content)

    def llm_user(self, content=None):
        return self._message("user", content)

    def llm_assistant(self, content=None):
        return self._message("assistant", content)

    def _chat_options(self, name: str, value: Any) -> tuple[str, list, int, Any]:
        opts = self._options(name, value)
        model = self._string(name, opts, "model")
        try:
            messages = as_list(opts.get("messages"))
        except TypeError:
            raise CapabilityError(name, "`messages` must be an array of message tables")
        if not messages:
            raise CapabilityError(name, "`messages` must not be empty")
        callback = opts.get("callback")
        if callback is not None and not is_lua_function(callback):
            raise CapabilityError(name, "`callback` must be a function")
        return (model, messages, self._seed(name, opts), callback)

    @capability("llm.stream")
    def llm_stream(self, value=None) -> str:
        model, messages, seed, callback = self._chat_options("llm.stream", value)
        deltas = self.services.inference.stream_chat(model=model, messages=messages, seed=seed)
        return drive_stream(deltas, callback, cumulative=True, check_cancelled=self.check_cancelled)

    @capability("llm.by_token")
    def llm_by_token(self, value=None) -> str:
        model, messages, seed, callback = self._chat_options("llm.by_token", value)
        if callback is None:
            raise CapabilityError("llm.by_token", "`callback` is required")
        deltas = self.services.inference.stream_chat(model=model, messages=messages, seed=seed)
        return drive_stream(deltas, callback, cumulative=False, check_cancelled=self.check_cancelled)

    @capability("llm.response")
    def llm_response(self, value=None) -> str:
        model, messages, seed, _ = self._chat_options("llm.response", value)
        return self.services.inference.complete(model=model, messages=messages, seed=seed)

    # currency

    def _currency(self, name: str):
        if self.services.currency is None:
            raise CapabilityError(name, "currency conversion is not configured")
        return self.services.currency

    @capability("currency.convert")
    def currency_convert(self, value=None) -> float:
        opts = self._options("currency.convert", value)
        amount = self._number("currency.convert", opts, "amount")
        src = self._string("currency.convert", opts, "from")
        dst = self._string("currency.convert", opts, "to")
        return self._currency("currency.convert").convert(amount, src, dst)

    @capability("currency.rate")
    def currency_rate(self, value=None) -> float:
        opts = self._options("currency.rate", value)
        return self._currency("currency.rate").rate(
            self._string("currency.rate", opts, "from"),
            self._string("currency.rate", opts, "to"),
        )

    @capability("currency.clear_cache")
    def currency_clear_cache(self, value=None) -> None:
        self._currency("currency.clear_cache").clear_cache()

    # fetch

    @capability("fetch")
    def fetch(self, value=None) -> Blob:
        if isinstance(value, str):
            opts = {"url": value}
        else:
            opts = self._options("fetch", value)
        url = self._string("fetch", opts, "url")
        max_bytes = self._number("fetch", opts, "max_bytes", required=False, integer=True)
        limit = min(max_bytes, self.services.fetch_max_bytes) if max_bytes else self.services.fetch_max_bytes
        data, content_type = fetch_bytes(self.services.http_client, url, max_bytes=limit)
        return Blob(data, name=url.rsplit("/", 1)[-1].split("?")[0], content_type=content_type)

    # comfy

    @capability("comfy.generate")
    def comfy_generate(self, value=None):
        name = "comfy.generate"
        if self.services.comfy is None:
            raise CapabilityError(name, "image generation is not configured")
        opts = self._options(name, value)
        request = ImageRequest(
            checkpoint=self._string(name, opts, "checkpoint"),
            prompt=self._string(name, opts, "prompt"),
            width=self._number(name, opts, "width", integer=True),
            height=self._number(name, opts, "height", integer=True),
            seed=self._seed(name, opts),
            negative=self._string(name, opts, "negative", required=False) or DEFAULT_NEGATIVE,
            arch=self._string(name, opts, "arch", required=False) or "",
            steps=self._number(name, opts, "steps", required=False, integer=True),
            cfg=self._number(name, opts, "cfg", required=False),
            sampler=self._string(name, opts, "sampler", required=False) or "euler",
            scheduler=self._string(name, opts, "scheduler", required=False),
            denoise=self._number(name, opts, "denoise", required=False),
        )
        source = opts.get("source_image")
        source_bytes = None
        if isinstance(source, Blob):
            source_bytes = source.data
        elif isinstance(source, str) and source:
            source_bytes, _ = fetch_bytes(self.services.http_client, source, max_bytes=self.services.fetch_max_bytes)
        elif source is not None:
            raise CapabilityError(name, "`source_image` must be a blob or a URL")
        images = self.services.comfy.generate(request, source_image=source_bytes, check_cancelled=self.check_cancelled)
        return self._table([Blob(data, name=f"image_{request.seed}_{i}.png", content_type="image/png") for i, data in enumerate(images, start=1)])

    # footer

    @capability("footer.encode")
    def footer_encode(self, value=None) -> str:
        if not is_lua_table(value):
            raise CapabilityError("footer.encode", "expects a table")
        record = from_lua(value)
        if isinstance(record, list):
            raise CapabilityError("footer.encode", "expects a table with string keys")
        return footer.encode(record)

    @capability("footer.decode")
    def footer_decode(self, text=None):
        if not isinstance(text, str):
            raise CapabilityError("footer.decode", "expects a string")
        record = footer.decode(text)
        if record is None:
            return None
        return self.lua.table_from(record)

    @capability("footer.strip")
    def footer_strip(self, text=None) -> str:
        if not isinstance(text, str):
            raise CapabilityError("footer.strip", "expects a string")
        return footer.strip(text)

    # installation

    def install(self, lua) -> None:
        self.lua = lua
        g = lua.globals()
        join = lua.execute(TOSTRING_JOIN, self.output, name="=output")
        g["output"] = join
        g["print"] = lua.execute(TOSTRING_JOIN, self.print_line, name="=print")
        g["attach"] = self.attach
        g["sleep"] = self.sleep
        g["random_seed"] = self.random_seed

        services = self.services
        models = list(getattr(services.inference, "models", []) or [])
        g["llm"] = lua.table_from(
            {
                "models": to_lua(lua, models),
                "system": self.llm_system,
                "user": self.llm_user,
                "assistant": self.llm_assistant,
                "stream": self.llm_stream,
                "by_token": self.llm_by_token,
                "response": self.llm_response,
            }
        )
        g["currency"] = lua.table_from(
            {
                "convert": self.currency_convert,
                "rate": self.currency_rate,
                "clear_cache": self.currency_clear_cache,
            }
        )
        g["fetch"] = self.fetch
        g["comfy"] = lua.table_from({"generate": self.comfy_generate})
        g["footer"] = lua.table_from(
            {
                "encode": self.footer_encode,
                "decode": self.footer_decode,
                "strip": self.footer_strip,
            }
        )
        g["catalog"] = to_lua(lua, services.catalog.to_script_table())
        if self.register_command is not None:
            g["discord"] = lua.table_from({"register_command": self.register_command})
