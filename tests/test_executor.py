from __future__ import annotations

import asyncio
import random
import threading
import time
import unittest
from types import SimpleNamespace

from chain import footer
from config.catalog import default_catalog
from services.currency import CurrencyError

try:
    from scripting.errors import ExecutionCancelled
    from scripting.errors import ScriptError
    from scripting.executor import EntryPoint
    from scripting.executor import ExecutionContext
    from scripting.executor import ScriptExecutor
    from scripting.executor import parse_markdown_lua_block
    from scripting.runtime import ScriptBundle
except ModuleNotFoundError:
    ScriptExecutor = None


class FakeInference:
    models = ["m1", "m2"]

    def __init__(self, deltas=("Hel", "lo", " world")):
        self.deltas = list(deltas)
        self.requests: list[dict] = []
        self.closed = False

    def stream_chat(self, *, model, messages, seed=None):
        self.requests.append({"model": model, "messages": messages, "seed": seed})
        try:
            for delta in self.deltas:
                yield delta
        finally:
            self.closed = True

    def complete(self, *, model, messages, seed=None):
        self.requests.append({"model": model, "messages": messages, "seed": seed})
        return "".join(self.deltas)


class BlockingInference(FakeInference):
    def __init__(self, seconds: float):
        super().__init__()
        self.seconds = seconds

    def complete(self, *, model, messages, seed=None):
        # ignores cancellation, like a stuck upstream call
        time.sleep(self.seconds)
        return "late"


class FakeCurrency:
    def convert(self, amount, src, dst):
        if dst == "XYZ":
            raise CurrencyError("no exchange rate available for USD -> XYZ")
        return amount * 2.0

    def rate(self, src, dst):
        return 2.0

    def clear_cache(self):
        return None


def make_services(inference=None):
    return SimpleNamespace(
        inference=inference or FakeInference(),
        currency=FakeCurrency(),
        comfy=None,
        http_client=None,
        catalog=default_catalog(),
        fetch_max_bytes=1024,
    )


COMMANDS = None if ScriptExecutor is None else ScriptBundle(
    sources=(
        (
            "commands.lua",
            """
discord.register_command({
    name = "greet",
    description = "Say hello",
    options = { { name = "who", description = "Who", type = "string", required = true } },
    execute = function(interaction)
        return "hello " .. interaction.options.who .. " from /" .. interaction.command_name
    end,
    reply = {
        requires = {},
        handler = function(chain)
            return {
                text = "again: " .. chain.instruction,
                footer = { count = #chain.messages, model = chain.params.model },
            }
        end,
    },
})
""",
        ),
    )
)


class RecordingSink:
    def __init__(self):
        self.flushes: list[str] = []
        self.finished = False
        self.failed: str | None = None
        self.was_cancelled = False

    async def flush(self, content, attachments):
        self.flushes.append(content)

    async def finish(self):
        self.finished = True

    async def fail(self, error_text):
        self.failed = error_text

    async def cancelled(self):
        self.was_cancelled = True


@unittest.skipIf(ScriptExecutor is None, "lupa not installed")
class ScriptExecutorTests(unittest.TestCase):
    def setUp(self):
        self.inference = FakeInference()
        self.executor = ScriptExecutor(make_services(self.inference), rng=random.Random(7))

    def run_code(self, code: str, **kwargs) -> str:
        ctx = ExecutionContext(entry=EntryPoint.expression(code), params={}, **kwargs)
        return self.executor.execute(ctx, COMMANDS)

    def test_expression_value_is_inspected(self):
        self.assertEqual(self.run_code("1 + 1"), "2")
        self.assertEqual(self.run_code('"a" .. "b"'), '"ab"')

    def test_statements_fall_back_from_expression(self):
        self.assertEqual(self.run_code("local x = 20\nreturn x + 1"), "21")

    def test_output_sets_text(self):
        self.assertEqual(self.run_code('output("hi", 2)'), "hi\t2")

    def test_print_log_is_rendered(self):
        self.assertEqual(self.run_code('output("body")\nprint("a", 1)\nprint("b")'), "body\n**Print Log**\na\t1\nb")

    def test_sandbox_removes_dangerous_globals(self):
        result = self.run_code(
            "return io == nil and require == nil and debug == nil and python == nil "
            "and dofile == nil and loadfile == nil and os.execute == nil and string.dump == nil"
        )
        self.assertEqual(result, "true")

    def test_load_rejects_binary_chunks(self):
        result = self.run_code('local f, err = load("\\27Lua", "x", "b")\nreturn f == nil')
        self.assertEqual(result, "true")

    def test_helpers_are_available(self):
        self.assertEqual(self.run_code('return string.trim("  x  ")'), "x")
        self.assertEqual(self.run_code("return map({1, 2}, function(v) return v * 10 end)[2]"), "20")

    def test_terminal_table_gets_footer(self):
        text = self.run_code('return { text = "answer", footer = { model = "x", seed = 42, ok = true } }')
        self.assertEqual(footer.strip(text), "answer")
        self.assertEqual(footer.decode(text), {"model": "x", "seed": 42, "ok": True})

    def test_oversized_footer_drops_long_strings(self):
        text = self.run_code(
            'return { text = "answer", footer = { model = "x", seed = 3, system = string.rep("s", 2500) } }'
        )
        self.assertEqual(footer.strip(text), "answer")
        self.assertEqual(footer.decode(text), {"model": "x", "seed": 3})
        self.assertLessEqual(len(text) - len("answer"), footer.MAX_FOOTER_LEN)

    def test_print_log_stays_above_footer(self):
        text = self.run_code('print("dbg")\nreturn { text = "answer", footer = { seed = 1 } }')
        self.assertTrue(text.startswith("answer\n**Print Log**\ndbg"))
        self.assertEqual(footer.decode(text), {"seed": 1})

    def test_runtime_error_is_script_error(self):
        with self.assertRaises(ScriptError) as ctx:
            self.run_code('error("boom")')
        self.assertIn("boom", str(ctx.exception))
        self.assertNotIn("stack traceback", str(ctx.exception))

    def test_compile_error(self):
        with self.assertRaises(ScriptError) as ctx:
            self.run_code("this is not lua")
        self.assertIn("compile error", str(ctx.exception))

    def test_capability_error_can_be_caught(self):
        result = self.run_code(
            'local ok, err = pcall(currency.convert, { amount = 1, from = "USD", to = "XYZ" })\n'
            "return tostring(ok) .. ' ' .. tostring(err)"
        )
        self.assertTrue(result.startswith("false currency.convert:"))

    def test_capability_validates_arguments(self):
        with self.assertRaises(ScriptError) as ctx:
            self.run_code('currency.convert("1 USD")')
        self.assertIn("currency.convert", str(ctx.exception))

    def test_stream_callback_false_stops_after_two_calls(self):
        result = self.run_code(
            """
local calls = 0
local text = llm.stream({
    model = "m1",
    seed = 3,
    messages = { llm.system("be brief"), llm.user("hi") },
    callback = function(chunk)
        calls = calls + 1
        output(chunk)
        return calls < 2
    end,
})
return text .. "|" .. calls
"""
        )
        self.assertEqual(result, "Hello|2")
        self.assertTrue(self.inference.closed)
        request = self.inference.requests[0]
        self.assertEqual(request["seed"], 3)
        self.assertEqual([m["role"] for m in request["messages"]], ["system", "user"])

    def test_by_token_passes_deltas(self):
        result = self.run_code(
            """
local parts = {}
llm.by_token({ model = "m1", messages = { llm.user("hi") }, callback = function(t) parts[#parts + 1] = t end })
return table.concat(parts, ",")
"""
        )
        self.assertEqual(result, "Hel,lo, world")

    def test_llm_response_gets_random_seed(self):
        self.assertEqual(self.run_code('return llm.response({ model = "m1", messages = { llm.user("hi") } })'), "Hello world")
        self.assertIsInstance(self.inference.requests[0]["seed"], int)

    def test_footer_capabilities(self):
        result = self.run_code(
            'local t = "x" .. footer.encode({ seed = 5 })\n'
            'return footer.decode(t).seed + #footer.strip(t)'
        )
        self.assertEqual(result, "6")

    def test_attach_adds_attachment(self):
        ctx = ExecutionContext(entry=EntryPoint.expression('attach("notes.txt", "hello")\noutput("done")'), params={})
        self.assertEqual(self.executor.execute(ctx, COMMANDS), "done")
        self.assertEqual([a.filename for a in ctx.emitter.message.attachments], ["notes.txt"])
        self.assertEqual(ctx.emitter.message.attachments[0].data, b"hello")

    def test_command_entry_receives_options(self):
        ctx = ExecutionContext(entry=EntryPoint.command("greet"), params={"who": "Ada"}, interaction={"user_id": "9"})
        self.assertEqual(self.executor.execute(ctx, COMMANDS), "hello Ada from /greet")
        with self.assertRaises(TypeError):
            ctx.params["who"] = "changed"

    def test_reply_entry_receives_chain(self):
        ctx = ExecutionContext(
            entry=EntryPoint.reply("greet"),
            params={},
            chain={"instruction": "more", "params": {"model": "x"}, "messages": [{"id": "1"}, {"id": "2"}]},
        )
        text = self.executor.execute(ctx, COMMANDS)
        self.assertEqual(footer.strip(text), "again: more")
        self.assertEqual(footer.decode(text), {"count": 2, "model": "x"})

    def test_unknown_command(self):
        ctx = ExecutionContext(entry=EntryPoint.command("nope"), params={})
        with self.assertRaises(ScriptError):
            self.executor.execute(ctx, COMMANDS)

    def test_cancel_flag_stops_busy_loop(self):
        event = threading.Event()
        event.set()
        with self.assertRaises(ExecutionCancelled):
            self.run_code("while true do end", cancel_event=event)

    def test_cancellation_escapes_protected_calls(self):
        for code in (
            "while true do pcall(function() while true do end end) end",
            "while true do xpcall(function() while true do end end, function(e) return e end) end",
            "while true do coroutine.resume(coroutine.create(function() while true do end end)) end",
        ):
            event = threading.Event()
            threading.Timer(0.05, event.set).start()
            with self.assertRaises(ExecutionCancelled):
                self.run_code(code, cancel_event=event)

    def test_xpcall_handler_runs_when_not_cancelled(self):
        code = 'return select(2, xpcall(function() error("boom", 0) end, function(e) return "handled " .. e end))'
        self.assertEqual(self.run_code(code), "handled boom")

    def test_cancelled_sleep(self):
        event = threading.Event()
        threading.Timer(0.05, event.set).start()
        with self.assertRaises(ExecutionCancelled):
            self.run_code("sleep(5000)", cancel_event=event)

    def test_fresh_runtime_per_execution(self):
        self.run_code("leaked = 1")
        self.assertEqual(self.run_code("return leaked == nil"), "true")


@unittest.skipIf(ScriptExecutor is None, "lupa not installed")
class ScriptExecutorRunTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_streams_and_finishes(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(entry=EntryPoint.expression('output("partial")\nreturn "final"'), params={})
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=10)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.text, "final")
        self.assertEqual(sink.flushes[-1], "final")
        self.assertTrue(sink.finished)

    async def test_run_reports_errors(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(entry=EntryPoint.expression('error("bad thing")'), params={})
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=10)
        self.assertEqual(outcome.status, "error")
        self.assertIn("bad thing", sink.failed)
        self.assertFalse(sink.finished)

    async def test_deadline_cancels_execution(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(entry=EntryPoint.expression('output("working")\nwhile true do end'), params={})
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=0.2)
        self.assertEqual(outcome.status, "cancelled")
        self.assertTrue(sink.was_cancelled)
        self.assertTrue(ctx.cancel_event.is_set())

    async def test_deadline_stops_pcall_wrapped_busy_loop(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(
            entry=EntryPoint.expression("while true do pcall(function() while true do end end) end"),
            params={},
        )
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=0.2, cancel_grace=5.0)
        self.assertEqual(outcome.status, "cancelled")
        self.assertTrue(sink.was_cancelled)

    async def test_unresponsive_worker_is_abandoned_after_grace(self):
        executor = ScriptExecutor(make_services(BlockingInference(seconds=1.0)))
        sink = RecordingSink()
        ctx = ExecutionContext(entry=EntryPoint.expression('llm.response{ model = "m1", messages = { llm.user("hi") } }'), params={})
        loop = asyncio.get_running_loop()
        started = loop.time()
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=0.1, cancel_grace=0.1)
        self.assertLess(loop.time() - started, 0.8)
        self.assertEqual(outcome.status, "cancelled")
        self.assertTrue(sink.was_cancelled)
        # let the abandoned worker return before the loop closes
        await asyncio.sleep(1.0)

    async def test_cancel_button_ends_run_before_deadline(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(entry=EntryPoint.expression("while true do end"), params={})
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, ctx.cancel_event.set)
        started = loop.time()
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=30)
        self.assertLess(loop.time() - started, 5.0)
        self.assertEqual(outcome.status, "cancelled")

    async def test_output_after_cancel_is_dropped(self):
        executor = ScriptExecutor(make_services())
        sink = RecordingSink()
        ctx = ExecutionContext(
            entry=EntryPoint.expression('output("one")\nsleep(2000)\noutput("two")'),
            params={},
        )
        asyncio.get_running_loop().call_later(0.1, ctx.cancel_event.set)
        outcome = await executor.run(ctx, COMMANDS, sink=sink, min_interval=0.0, timeout=10)
        self.assertEqual(outcome.status, "cancelled")
        self.assertNotIn("two", sink.flushes)


@unittest.skipIf(ScriptExecutor is None, "lupa not installed")
class MarkdownBlockTests(unittest.TestCase):
    def test_extracts_first_lua_block(self):
        text = "look:\n```lua\noutput('hi')\n```\nand\n```lua\nsecond()\n```"
        self.assertEqual(parse_markdown_lua_block(text), "output('hi')")

    def test_multiline_block(self):
        text = "```lua\nlocal x = 1\nreturn x\n```"
        self.assertEqual(parse_markdown_lua_block(text), "local x = 1\nreturn x")

    def test_no_block(self):
        self.assertIsNone(parse_markdown_lua_block("```python\nprint(1)\n```"))
        self.assertIsNone(parse_markdown_lua_block("no code here"))


if __name__ == "__main__":
    unittest.main()
