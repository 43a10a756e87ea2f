from __future__ import annotations

import asyncio
import random
import re
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from chain import footer
from config.defaults import CANCEL_GRACE_SECONDS
from config.defaults import CANCEL_POLL_SECONDS
from output.coordinator import OutputCoordinator
from scripting.capabilities import CapabilityTable
from scripting.emitter import OutputEmitter
from scripting.errors import CapabilityError
from scripting.errors import ExecutionCancelled
from scripting.errors import RegistrationError
from scripting.errors import ScriptError
from scripting.registry import CommandCollector
from scripting.runtime import LuaError
from scripting.runtime import ScriptBundle
from scripting.runtime import create_lua_runtime
from scripting.runtime import from_lua
from scripting.runtime import is_lua_table
from scripting.runtime import to_lua

# Tried first so `/execute 1 + 1` shows a value; plain statements are the fallback.
EXPRESSION_TEMPLATE = "local result = (\n{code}\n)\nif result ~= nil then return inspect(result) end"
LUA_BLOCK_RE = re.compile(r"```lua[ \t]*\r?\n(.*?)\r?\n?```", re.DOTALL)


def parse_markdown_lua_block(text: str) -> str | None:
    """Return the body of the first ```lua fenced block in `text`, if any."""
    match = LUA_BLOCK_RE.search(text or "")
    if match is None:
        return None
    return match.group(1)


@dataclass(frozen=True, slots=True)
class EntryPoint:
    kind: str  # command | reply | expression
    name: str = ""
    code: str = ""

    @classmethod
    def command(cls, name: str) -> "EntryPoint":
        return cls(kind="command", name=name)

    @classmethod
    def reply(cls, name: str) -> "EntryPoint":
        return cls(kind="reply", name=name)

    @classmethod
    def expression(cls, code: str) -> "EntryPoint":
        return cls(kind="expression", name="execute", code=code)

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.name}"


@dataclass(slots=True)
class ExecutionContext:
    entry: EntryPoint
    params: Mapping[str, Any]
    cancel_event: threading.Event = field(default_factory=threading.Event)
    emitter: OutputEmitter = field(default_factory=OutputEmitter)
    interaction: dict[str, Any] = field(default_factory=dict)
    chain: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.params = MappingProxyType(dict(self.params))


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    status: str  # ok | error | cancelled
    text: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _log_abandoned_worker(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    err = task.exception()
    print(f"[Exec] abandoned worker ended: {type(err).__name__ if err else 'ok'}")


def _lua_error_message(err: Exception) -> str:
    text = str(err).split("stack traceback:", 1)[0].strip()
    return text or type(err).__name__


class ScriptExecutor:
    """
    Runs one entry point in a fresh sandboxed runtime.

    `execute` blocks and is meant for a worker thread; `run` drives it from the event loop
    with a coordinator attached.
    """

    def __init__(self, services, *, max_memory: int | None = None, rng: random.Random | None = None) -> None:
        self.services = services
        self.max_memory = max_memory
        self.rng = rng

    def _entry_function(self, lua, ctx: ExecutionContext, collector: CommandCollector):
        entry = ctx.entry
        if entry.kind == "expression":
            try:
                return lua.compile(EXPRESSION_TEMPLATE.format(code=entry.code), name="=execute", mode="t")
            except LuaError:
                try:
                    return lua.compile(entry.code, name="=execute", mode="t")
                except LuaError as e:
                    raise ScriptError(f"compile error: {_lua_error_message(e)}") from e

        command = collector.commands.get(entry.name)
        if command is None:
            raise ScriptError(f"unknown command /{entry.name}")
        if entry.kind == "command":
            return command.execute
        if entry.kind == "reply":
            if command.reply_handler is None:
                raise ScriptError(f"/{entry.name} does not handle replies")
            return command.reply_handler
        raise ScriptError(f"unknown entry point kind {entry.kind!r}")

    def _argument(self, lua, ctx: ExecutionContext):
        if ctx.entry.kind == "expression":
            return None
        if ctx.entry.kind == "reply":
            return to_lua(lua, dict(ctx.chain or {}))
        table = {"options": dict(ctx.params), "command_name": ctx.entry.name}
        table.update(ctx.interaction)
        return to_lua(lua, table)

    def terminal_text(self, lua, value: Any, emitter: OutputEmitter) -> str:
        if value is None:
            return emitter.message.text
        if isinstance(value, str):
            return value
        if is_lua_table(value):
            data = from_lua(value)
            if isinstance(data, dict) and ("text" in data or "footer" in data):
                text = data.get("text", emitter.message.text)
                if not isinstance(text, str):
                    raise ScriptError("terminal table `text` must be a string")
                record = data.get("footer") or {}
                if not isinstance(record, dict):
                    raise ScriptError("terminal table `footer` must be a table")
                try:
                    record, dropped = footer.fit(record)
                    if dropped:
                        print(f"[Exec] footer too long; dropped {', '.join(dropped)}")
                    return footer.strip(text) + footer.encode(record)
                except ValueError as e:
                    raise ScriptError(f"invalid footer: {e}") from e
        return str(lua.globals().inspect(value))

    def execute(self, ctx: ExecutionContext, bundle: ScriptBundle) -> str:
        cancel_event = ctx.cancel_event
        try:
            lua = create_lua_runtime(cancel_check=cancel_event.is_set, max_memory=self.max_memory)
            collector = CommandCollector()
            caps = CapabilityTable(
                self.services,
                ctx.emitter,
                cancel_event=cancel_event,
                rng=self.rng,
                register_command=collector.register,
            )
            caps.install(lua)
            bundle.load_into(lua)
            fn = self._entry_function(lua, ctx, collector)
            arg = self._argument(lua, ctx)
            value = fn() if arg is None else fn(arg)
            if isinstance(value, tuple):
                value = value[0] if value else None
            text = self.terminal_text(lua, value, ctx.emitter)
            ctx.emitter.output(text)
            return ctx.emitter.render()
        except (ExecutionCancelled, ScriptError):
            raise
        except (LuaError, CapabilityError, RegistrationError, MemoryError) as e:
            if cancel_event.is_set():
                raise ExecutionCancelled() from e
            if isinstance(e, MemoryError) and not isinstance(e, LuaError):
                raise ScriptError("script exceeded its memory limit") from e
            raise ScriptError(_lua_error_message(e)) from e

    async def run(
        self,
        ctx: ExecutionContext,
        bundle: ScriptBundle,
        *,
        sink,
        min_interval: float,
        timeout: float,
        cancel_grace: float = CANCEL_GRACE_SECONDS,
    ) -> ExecutionOutcome:
        """
        Execute on a worker thread while a coordinator mirrors output onto `sink`.

        The coordinator is always finished; the sink then gets `finish`, `fail` or
        `cancelled` depending on how the execution ended. A worker still running
        `cancel_grace` seconds after cancellation is abandoned and the run counts as cancelled.
        """
        loop = asyncio.get_running_loop()
        coordinator = OutputCoordinator(sink, min_interval=min_interval)
        ctx.emitter = OutputEmitter.for_coordinator(loop, coordinator, cancelled=ctx.cancel_event.is_set)

        worker = asyncio.ensure_future(asyncio.to_thread(self.execute, ctx, bundle))
        deadline = loop.time() + timeout
        done: set = set()
        # the cancel button sets the flag from the loop; the deadline sets it here
        while not done and not ctx.cancel_event.is_set():
            remaining = deadline - loop.time()
            if remaining <= 0:
                print(f"[Exec] {ctx.entry.label} passed the {timeout:.0f}s deadline; cancelling")
                ctx.cancel_event.set()
                break
            done, _ = await asyncio.wait({worker}, timeout=min(remaining, CANCEL_POLL_SECONDS))
        if not done:
            done, _ = await asyncio.wait({worker}, timeout=cancel_grace)

        try:
            if not done:
                print(f"[Exec] {ctx.entry.label} still running {cancel_grace:.0f}s after cancel; abandoning its worker")
                worker.add_done_callback(_log_abandoned_worker)
                raise ExecutionCancelled()
            text = worker.result()
            outcome = ExecutionOutcome(status="ok", text=text)
        except ExecutionCancelled:
            outcome = ExecutionOutcome(status="cancelled")
        except ScriptError as e:
            outcome = ExecutionOutcome(status="error", error=str(e))
        except Exception as e:
            print(f"[Exec] {ctx.entry.label} crashed: {type(e).__name__}: {e}")
            outcome = ExecutionOutcome(status="error", error=f"Internal error: {type(e).__name__}")

        await coordinator.finish()
        try:
            if outcome.status == "ok":
                await sink.finish()
            elif outcome.status == "cancelled":
                await sink.cancelled()
            else:
                await sink.fail(outcome.error)
        except Exception as e:
            print(f"[Output] failed to finalize {ctx.entry.label}: {e}")
        print(f"[Exec] {ctx.entry.label} finished: {outcome.status}")
        return outcome
