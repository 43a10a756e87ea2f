from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from config.defaults import CANCEL_CHECK_INSTRUCTIONS
from config.defaults import SCRIPT_FILES
from lupa import lua54

LuaError = lua54.LuaError
lua_type = lua54.lua_type

MAX_TABLE_DEPTH = 32

# Runs once per runtime, before any script. Receives (cancel_check, instruction_count).
SANDBOX_PRELUDE = r"""
local cancel_check, instruction_count = ...
local sethook = debug.sethook
local raw_load = load

local function inspect_value(v, indent, seen)
    local t = type(v)
    if t == "string" then
        return string.format("%q", v)
    end
    if t ~= "table" then
        return tostring(v)
    end
    if seen[v] then
        return "<cycle>"
    end
    seen[v] = true
    local keys = {}
    for k in pairs(v) do
        keys[#keys + 1] = k
    end
    table.sort(keys, function(a, b)
        local ta, tb = type(a), type(b)
        if ta ~= tb then
            return ta < tb
        end
        if ta == "number" or ta == "string" then
            return a < b
        end
        return tostring(a) < tostring(b)
    end)
    if #keys == 0 then
        seen[v] = nil
        return "{}"
    end
    local n = #v
    local pad = string.rep("  ", indent + 1)
    local parts = {}
    for _, k in ipairs(keys) do
        local rendered
        if math.type(k) == "integer" and k >= 1 and k <= n then
            rendered = inspect_value(v[k], indent + 1, seen)
        elseif type(k) == "string" and k:match("^[%a_][%w_]*$") then
            rendered = k .. " = " .. inspect_value(v[k], indent + 1, seen)
        else
            rendered = "[" .. inspect_value(k, indent + 1, seen) .. "] = " .. inspect_value(v[k], indent + 1, seen)
        end
        parts[#parts + 1] = pad .. rendered
    end
    seen[v] = nil
    return "{\n" .. table.concat(parts, ",\n") .. "\n" .. string.rep("  ", indent) .. "}"
end

inspect = function(v)
    return inspect_value(v, 0, {})
end

function string.trim(s)
    local r = s:gsub("^%s+", "")
    r = r:gsub("%s+$", "")
    return r
end

function map(tbl, fn)
    local out = {}
    for i, v in ipairs(tbl) do
        out[i] = fn(v, i)
    end
    return out
end

load = function(chunk, name, mode, env)
    return raw_load(chunk, name, "t", env)
end

os = { time = os.time, clock = os.clock, date = os.date, difftime = os.difftime }
io = nil
package = nil
require = nil
dofile = nil
loadfile = nil
collectgarbage = nil
debug = nil
python = nil
string.dump = nil

if cancel_check then
    local CANCELLED = "execution cancelled"
    local raw_pcall, raw_xpcall = pcall, xpcall
    local raw_resume, raw_close = coroutine.resume, coroutine.close

    -- once cancelled, protected calls re-raise instead of returning false
    local function reraise_if_cancelled(ok, ...)
        if not ok and cancel_check() then
            error(CANCELLED, 0)
        end
        return ok, ...
    end

    pcall = function(f, ...)
        return reraise_if_cancelled(raw_pcall(f, ...))
    end
    xpcall = function(f, handler, ...)
        local function guarded(e)
            if cancel_check() then
                return e
            end
            return handler(e)
        end
        return reraise_if_cancelled(raw_xpcall(f, guarded, ...))
    end
    coroutine.resume = function(co, ...)
        return reraise_if_cancelled(raw_resume(co, ...))
    end
    coroutine.close = function(co)
        return reraise_if_cancelled(raw_close(co))
    end

    sethook(function()
        if cancel_check() then
            error(CANCELLED, 0)
        end
    end, "", instruction_count)
end
"""


class Blob:
    """Binary data handed to scripts without passing through Lua strings."""

    def __init__(self, data: bytes, *, name: str = "", content_type: str = "") -> None:
        self.data = bytes(data)
        self.name = str(name or "")
        self.content_type = str(content_type or "")

    @property
    def size(self) -> int:
        return len(self.data)

    def text(self, encoding: str | None = None) -> str:
        return self.data.decode(encoding or "utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self.data)

    def __str__(self) -> str:
        label = f" {self.name}" if self.name else ""
        return f"<blob{label} {len(self.data)} bytes>"


def _filter_attribute_access(obj, attr_name, is_setting):
    if isinstance(attr_name, str) and not attr_name.startswith("_") and not is_setting:
        return attr_name
    raise AttributeError("access denied")


def create_lua_runtime(
    *,
    cancel_check: Callable[[], bool] | None = None,
    max_memory: int | None = None,
    instruction_count: int = CANCEL_CHECK_INSTRUCTIONS,
):
    lua = lua54.LuaRuntime(
        register_eval=False,
        register_builtins=False,
        unpack_returned_tuples=True,
        attribute_filter=_filter_attribute_access,
        max_memory=max_memory,
    )
    lua.execute(SANDBOX_PRELUDE, cancel_check, int(instruction_count), name="=sandbox")
    return lua


def is_lua_table(value: Any) -> bool:
    return lua_type(value) == "table"


def is_lua_function(value: Any) -> bool:
    return lua_type(value) == "function"


def from_lua(value: Any, *, depth: int = 0) -> Any:
    """
    Convert a Lua table into dicts and lists, recursively.

    Tables whose keys are exactly 1..n become lists; empty tables become {}. Functions and
    other Lua objects are returned untouched.
    """
    if not is_lua_table(value):
        return value
    if depth > MAX_TABLE_DEPTH:
        raise ValueError("table nesting is too deep")
    items = list(value.items())
    if not items:
        return {}
    keys = [k for k, _ in items]
    if all(isinstance(k, int) and not isinstance(k, bool) for k in keys) and sorted(keys) == list(range(1, len(keys) + 1)):
        by_key = dict(items)
        return [from_lua(by_key[i], depth=depth + 1) for i in range(1, len(keys) + 1)]
    return {k: from_lua(v, depth=depth + 1) for k, v in items}


def as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, dict) and not value:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise TypeError(f"expected an array, got {type(value).__name__}")


def to_lua(lua, value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return lua.table_from(value, recursive=True)
    return value


@dataclass(frozen=True)
class ScriptBundle:
    """Script sources read once, shared by every runtime built from them."""

    sources: tuple[tuple[str, str], ...]

    def load_into(self, lua) -> None:
        for name, code in self.sources:
            lua.execute(code, name=f"@{name}", mode="t")


def load_script_bundle(scripts_dir: str | Path, files: tuple[str, ...] = SCRIPT_FILES) -> ScriptBundle:
    base = Path(scripts_dir)
    sources: list[tuple[str, str]] = []
    for filename in files:
        path = base / filename
        if not path.exists():
            print(f"[Registry] script {path} not found; skipping")
            continue
        sources.append((f"{base.name}/{filename}", path.read_text(encoding="utf-8")))
    return ScriptBundle(sources=tuple(sources))
