from __future__ import annotations

import unittest
from types import SimpleNamespace

from chain import footer
from chain.resolver import Chain
from chain.resolver import ChainMessage
from chain.resolver import ResolutionError
from chain.resolver import resolve

BOT_ID = 1000
USER_ID = 2000


def user_msg(msg_id: int, content: str) -> ChainMessage:
    return ChainMessage(
        id=msg_id,
        content=content,
        author_id=USER_ID,
        author_name="someone",
        is_bot=False,
        channel_id=10,
    )


def bot_msg(msg_id: int, content: str, record: dict | None = None, attachments=()) -> ChainMessage:
    if record is not None:
        content = content + footer.encode(record)
    return ChainMessage(
        id=msg_id,
        content=content,
        author_id=BOT_ID,
        author_name="scriptbot",
        is_bot=True,
        channel_id=10,
        guild_id=20,
        attachments=tuple(attachments),
    )


ASK_REPLY = SimpleNamespace(requires=("model", "seed"), defaults={"system": "You are a helpful assistant."})


class ResolveTests(unittest.TestCase):
    def test_footer_fills_parameters_when_options_are_gone(self):
        chain = Chain(
            messages=(
                bot_msg(1, "Paris.", {"model": "x", "seed": 42, "ok": True}),
                user_msg(2, "And Germany?"),
            ),
            command_name="ask",
        )
        ctx = resolve(chain, ASK_REPLY)
        self.assertEqual(ctx.params["model"], "x")
        self.assertEqual(ctx.params["seed"], 42)
        self.assertIs(ctx.params["ok"], True)
        self.assertEqual(ctx.params["system"], "You are a helpful assistant.")
        self.assertEqual(ctx.instruction, "And Germany?")

    def test_options_take_precedence_over_footer(self):
        chain = Chain(
            messages=(
                bot_msg(1, "first", {"model": "from-footer", "seed": 1}),
                user_msg(2, "again"),
            ),
            command_name="ask",
            options={"model": "from-options", "seed": None},
        )
        ctx = resolve(chain, ASK_REPLY)
        self.assertEqual(ctx.params["model"], "from-options")
        # None options do not mask recorded values
        self.assertEqual(ctx.params["seed"], 1)

    def test_footer_takes_precedence_over_defaults(self):
        chain = Chain(
            messages=(
                bot_msg(1, "hi", {"model": "m", "seed": 3, "system": "Be terse."}),
                user_msg(2, "more"),
            ),
            command_name="ask",
        )
        self.assertEqual(resolve(chain, ASK_REPLY).params["system"], "Be terse.")

    def test_earliest_bot_footer_wins(self):
        chain = Chain(
            messages=(
                bot_msg(1, "one", {"model": "first", "seed": 1}),
                user_msg(2, "two"),
                bot_msg(3, "three", {"model": "second", "seed": 2}),
                user_msg(4, "four"),
            ),
            command_name="ask",
        )
        ctx = resolve(chain, ASK_REPLY)
        self.assertEqual(ctx.params["model"], "first")
        self.assertEqual(ctx.instruction, "four")

    def test_missing_required_parameter_fails(self):
        chain = Chain(
            messages=(bot_msg(1, "no footer here"), user_msg(2, "continue")),
            command_name="ask",
        )
        with self.assertRaises(ResolutionError) as ctx:
            resolve(chain, ASK_REPLY)
        self.assertIn("model", str(ctx.exception))
        self.assertIn("/ask", str(ctx.exception))

    def test_defaults_do_not_satisfy_requirements(self):
        requirements = SimpleNamespace(requires=("model",), defaults={"model": "fallback"})
        chain = Chain(messages=(bot_msg(1, "x"), user_msg(2, "y")), command_name="paint")
        with self.assertRaises(ResolutionError):
            resolve(chain, requirements)

    def test_blank_instruction_fails(self):
        chain = Chain(
            messages=(bot_msg(1, "x", {"model": "m", "seed": 1}), user_msg(2, "   ")),
            command_name="ask",
        )
        with self.assertRaises(ResolutionError):
            resolve(chain, ASK_REPLY)

    def test_history_strips_footers_and_orders_roles(self):
        chain = Chain(
            messages=(
                bot_msg(1, "Paris.", {"model": "x", "seed": 42}),
                user_msg(2, "And Germany?"),
            ),
            command_name="ask",
            options={"prompt": "Capital of France?"},
        )
        ctx = resolve(chain, ASK_REPLY)
        self.assertEqual(
            ctx.history,
            [
                {"role": "system", "content": "You are a helpful assistant."},
                {"role": "user", "content": "Capital of France?"},
                {"role": "assistant", "content": "Paris."},
                {"role": "user", "content": "And Germany?"},
            ],
        )

    def test_script_table_uses_string_ids(self):
        chain = Chain(
            messages=(
                bot_msg(1, "img", {"model": "m"}, attachments=["https://cdn/x.png"]),
                user_msg(2, "again"),
            ),
            command_name="paint",
        )
        table = resolve(chain, SimpleNamespace(requires=("model",), defaults={})).to_script_table()
        self.assertEqual(table["command_name"], "paint")
        self.assertEqual(table["messages"][0]["id"], "1")
        self.assertEqual(table["messages"][0]["guild_id"], "20")
        self.assertNotIn("guild_id", table["messages"][1])
        self.assertEqual(table["messages"][0]["attachments"], ["https://cdn/x.png"])

    def test_no_requirements(self):
        chain = Chain(messages=(bot_msg(1, "x"), user_msg(2, "y")), command_name="custom")
        ctx = resolve(chain)
        self.assertEqual(ctx.params, {})
        self.assertEqual(ctx.instruction, "y")


if __name__ == "__main__":
    unittest.main()
