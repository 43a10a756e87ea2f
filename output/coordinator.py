from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True, slots=True)
class Attachment:
    filename: str
    data: bytes


@dataclass(slots=True)
class StreamedMessage:
    """Text and attachments produced so far by one execution."""

    text: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    revision: int = 0

    def set_text(self, text: str) -> None:
        self.text = text
        self.revision += 1

    def add_attachment(self, attachment: Attachment) -> None:
        self.attachments.append(attachment)
        self.revision += 1


class OutputSink(Protocol):
    async def flush(self, content: str, attachments: list[Attachment]) -> None: ...


class OutputCoordinator:
    """
    Collapses rapid updates into at most one sink flush per `min_interval`.

    Must be used from the event loop thread. `update` only records state and schedules the
    flush loop; flushing happens in a task so callers never wait on Discord.
    """

    def __init__(self, sink: OutputSink, *, min_interval: float = 1.0, clock=time.monotonic) -> None:
        self.sink = sink
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock

        self.last_flushed: str | None = None
        self.last_flush_at: float | None = None
        self.pending: str = ""
        self.pending_attachments: list[Attachment] = []
        self.flush_count = 0

        self._dirty = False
        self._in_flight = False
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def update(self, content: str, attachments: list[Attachment] | tuple[Attachment, ...] = ()) -> None:
        if self._closed:
            return
        self.pending = content
        if attachments:
            self.pending_attachments.extend(attachments)
        if content == self.last_flushed and not self.pending_attachments:
            return
        self._dirty = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._flush_loop())

    def _cooldown_remaining(self) -> float:
        if self.last_flush_at is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - self.last_flush_at))

    async def _flush_loop(self) -> None:
        while self._dirty and not self._closed:
            wait = self._cooldown_remaining()
            if wait > 0:
                await asyncio.sleep(wait)
                continue
            await self._flush_once()

    async def _flush_once(self) -> bool:
        content = self.pending
        attachments = self.pending_attachments
        self.pending_attachments = []
        self._dirty = False
        self._in_flight = True
        self.last_flush_at = self._clock()
        try:
            await self.sink.flush(content, attachments)
        except Exception as e:
            print(f"[Output] flush failed, retrying on next interval: {e}")
            # newer attachments go after the ones that failed
            self.pending_attachments = attachments + self.pending_attachments
            self._dirty = True
            return False
        finally:
            self._in_flight = False
            self.flush_count += 1
        self.last_flushed = content
        return True

    async def finish(self) -> bool:
        """
        Flush the latest content once, regardless of the cooldown, and close.

        Returns whether the final flush reached the sink.
        """
        if self._closed:
            return False
        self._closed = True
        task = self._task
        self._task = None
        if task is not None and not task.done():
            if self._in_flight:
                # let the running flush land before the final one
                try:
                    await task
                except Exception as e:
                    print(f"[Output] in-flight flush failed during finish: {e}")
            else:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        return await self._flush_once()

