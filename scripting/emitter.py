from __future__ import annotations

import asyncio
from typing import Callable

from chain import footer
from config.defaults import PRINT_LOG_HEADER
from output.coordinator import Attachment
from output.coordinator import StreamedMessage
from scripting.errors import ExecutionCancelled

Deliver = Callable[[str, tuple[Attachment, ...]], None]


def _discard(content: str, attachments: tuple[Attachment, ...]) -> None:
    return None


class OutputEmitter:
    """
    Worker-thread side of the output path.

    Holds the execution's StreamedMessage and print log and hands every change to `deliver`,
    which in production schedules `OutputCoordinator.update` on the event loop.
    """

    def __init__(self, deliver: Deliver = _discard, *, cancelled: Callable[[], bool] | None = None) -> None:
        self.message = StreamedMessage()
        self.print_log: list[str] = []
        self._deliver = deliver
        self._cancelled = cancelled or (lambda: False)

    @classmethod
    def for_coordinator(cls, loop: asyncio.AbstractEventLoop, coordinator, *, cancelled=None) -> "OutputEmitter":
        def deliver(content: str, attachments: tuple[Attachment, ...]) -> None:
            loop.call_soon_threadsafe(coordinator.update, content, attachments)

        return cls(deliver, cancelled=cancelled)

    def _check_cancelled(self) -> None:
        if self._cancelled():
            raise ExecutionCancelled()

    def render(self, text: str | None = None) -> str:
        out = self.message.text if text is None else text
        if not self.print_log:
            return out
        # the footer must stay the final paragraph
        body, tail = footer.split(out)
        log = "\n".join(self.print_log)
        return body + "\n" + PRINT_LOG_HEADER + "\n" + log + tail

    def output(self, text: str) -> str:
        self._check_cancelled()
        self.message.set_text(str(text))
        self._deliver(self.render(), ())
        return self.message.text

    def print_line(self, text: str) -> None:
        self._check_cancelled()
        self.print_log.append(str(text))
        self._deliver(self.render(), ())

    def attach(self, filename: str, data: bytes) -> None:
        self._check_cancelled()
        attachment = Attachment(filename=str(filename), data=bytes(data))
        self.message.add_attachment(attachment)
        self._deliver(self.render(), (attachment,))
