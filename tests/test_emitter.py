from __future__ import annotations

import unittest

from chain import footer
from scripting.emitter import OutputEmitter
from scripting.errors import ExecutionCancelled


class OutputEmitterTests(unittest.TestCase):
    def setUp(self):
        self.delivered = []
        self.cancelled = False
        self.emitter = OutputEmitter(
            lambda content, attachments: self.delivered.append((content, attachments)),
            cancelled=lambda: self.cancelled,
        )

    def test_output_overwrites_text(self):
        self.emitter.output("first")
        self.emitter.output("second")
        self.assertEqual(self.emitter.message.text, "second")
        self.assertEqual([c for c, _ in self.delivered], ["first", "second"])

    def test_print_log_follows_body(self):
        self.emitter.output("body")
        self.emitter.print_line("debug 1")
        self.emitter.print_line("debug 2")
        self.assertEqual(self.emitter.render(), "body\n**Print Log**\ndebug 1\ndebug 2")

    def test_print_log_stays_above_footer(self):
        self.emitter.print_line("note")
        rendered = self.emitter.render("answer" + footer.encode({"seed": 1}))
        self.assertTrue(rendered.startswith("answer\n**Print Log**\nnote"))
        self.assertEqual(footer.decode(rendered), {"seed": 1})

    def test_render_without_log_is_text(self):
        self.emitter.output("plain")
        self.assertEqual(self.emitter.render(), "plain")

    def test_attach_delivers_attachment_once(self):
        self.emitter.attach("a.txt", b"hello")
        self.emitter.output("done")
        self.assertEqual(len(self.delivered[0][1]), 1)
        self.assertEqual(self.delivered[0][1][0].filename, "a.txt")
        self.assertEqual(self.delivered[1][1], ())
        self.assertEqual(len(self.emitter.message.attachments), 1)

    def test_cancelled_emitter_refuses_output(self):
        self.emitter.output("before")
        self.cancelled = True
        with self.assertRaises(ExecutionCancelled):
            self.emitter.output("after")
        with self.assertRaises(ExecutionCancelled):
            self.emitter.print_line("after")
        self.assertEqual(self.emitter.message.text, "before")
        self.assertEqual(len(self.delivered), 1)


if __name__ == "__main__":
    unittest.main()
