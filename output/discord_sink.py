from __future__ import annotations

import io
from typing import Callable

import discord
from chain import footer
from config.defaults import CANCELLED_TEXT
from config.defaults import DISCORD_MAX_MESSAGE_LEN
from config.defaults import INITIAL_OUTPUT_TEXT
from output.coordinator import Attachment

EMPTY_OUTPUT_TEXT = "\u200b"
NO_MENTIONS = discord.AllowedMentions.none()


def chunk_text(text: str, limit: int = DISCORD_MAX_MESSAGE_LEN) -> list[str]:
    text = text or ""
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text

    while len(remaining) > limit:
        # Prefer splitting on paragraph, then newline, then space
        split_at = remaining.rfind("\n\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind("\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, limit)
        if split_at <= 0:
            split_at = limit

        chunk = remaining[:split_at].rstrip()
        if chunk:
            chunks.append(chunk)

        remaining = remaining[split_at:].lstrip("\n ")

    if remaining:
        chunks.append(remaining)

    return chunks or [""]


def chunk_output(text: str, limit: int = DISCORD_MAX_MESSAGE_LEN) -> list[str]:
    """
    Split output into message-sized chunks with the footer kept whole at the end.
    """
    body, tail = footer.split(text)
    if not tail:
        return chunk_text(body, limit)
    if len(tail) >= limit:
        # no chunk may exceed `limit`, even at the cost of splitting the footer
        return chunk_text(text, limit)
    chunks = chunk_text(body, limit - len(tail))
    chunks[-1] = chunks[-1] + tail
    return chunks


def _display(chunk: str) -> str:
    return chunk if chunk.strip() else EMPTY_OUTPUT_TEXT


def _to_files(attachments: list[Attachment]) -> list[discord.File]:
    return [discord.File(io.BytesIO(a.data), filename=a.filename) for a in attachments]


class DiscordMessageSink:
    """
    Mirrors the coordinator's content onto one or more Discord messages.

    The first message is the interaction response or a reply to the triggering message;
    overflow chunks become replies to the previous chunk. The cancel view, when given,
    always sits on the last message until `finish`.
    """

    def __init__(
        self,
        first_message: discord.Message,
        *,
        view_factory: Callable[[], discord.ui.View] | None = None,
        view: discord.ui.View | None = None,
        chunk_limit: int = DISCORD_MAX_MESSAGE_LEN,
    ) -> None:
        self.messages: list[discord.Message] = [first_message]
        self.contents: list[str] = [str(getattr(first_message, "content", "") or "")]
        self.view_factory = view_factory
        self.chunk_limit = int(chunk_limit)
        self.view_index: int | None = 0 if view_factory is not None else None
        # the live view; stopped whenever it leaves a message so the client drops it
        self.view = view
        self.terminal = False

    @classmethod
    async def for_interaction(
        cls,
        interaction: discord.Interaction,
        *,
        view_factory: Callable[[], discord.ui.View] | None = None,
        initial_text: str = INITIAL_OUTPUT_TEXT,
    ) -> "DiscordMessageSink":
        view = view_factory() if view_factory is not None else None
        kwargs = {"allowed_mentions": NO_MENTIONS}
        if view is not None:
            kwargs["view"] = view
        await interaction.response.send_message(initial_text, **kwargs)
        first = await interaction.original_response()
        return cls(first, view_factory=view_factory, view=view)

    @classmethod
    async def for_reply(
        cls,
        message: discord.Message,
        *,
        view_factory: Callable[[], discord.ui.View] | None = None,
        initial_text: str = INITIAL_OUTPUT_TEXT,
    ) -> "DiscordMessageSink":
        view = view_factory() if view_factory is not None else None
        kwargs = {"mention_author": False, "allowed_mentions": NO_MENTIONS}
        if view is not None:
            kwargs["view"] = view
        first = await message.reply(initial_text, **kwargs)
        return cls(first, view_factory=view_factory, view=view)

    @property
    def message_ids(self) -> list[int]:
        return [int(m.id) for m in self.messages]

    async def flush(self, content: str, attachments: list[Attachment]) -> None:
        if self.terminal:
            return
        chunks = [_display(c) for c in chunk_output(content, self.chunk_limit)]

        for idx, chunk in enumerate(chunks):
            if idx < len(self.messages):
                files = _to_files(attachments) if idx == 0 and attachments else []
                if chunk != self.contents[idx] or files:
                    await self._edit(idx, content=chunk, files=files)
                continue
            await self._append(chunk)

        while len(self.messages) > len(chunks):
            msg = self.messages.pop()
            self.contents.pop()
            await msg.delete()
            if self.view_index is not None and self.view_index >= len(self.messages):
                self.view_index = None

        await self._place_view()

    async def _edit(self, idx: int, *, content: str | None = None, files: list[discord.File] | None = None, **kwargs) -> None:
        msg = self.messages[idx]
        if content is not None:
            kwargs["content"] = content
        if files:
            kwargs["attachments"] = [*msg.attachments, *files]
        edited = await msg.edit(allowed_mentions=NO_MENTIONS, **kwargs)
        if edited is not None:
            self.messages[idx] = edited
        if content is not None:
            self.contents[idx] = content

    async def _append(self, chunk: str) -> None:
        prev = self.messages[-1]
        # the view moves to the new last message
        await self._remove_view()
        msg = await prev.reply(chunk, mention_author=False, allowed_mentions=NO_MENTIONS)
        self.messages.append(msg)
        self.contents.append(chunk)

    async def _place_view(self) -> None:
        if self.view_factory is None or self.terminal:
            return
        last = len(self.messages) - 1
        if self.view_index == last:
            return
        await self._remove_view()
        view = self.view_factory()
        await self._edit(last, view=view)
        self.view = view
        self.view_index = last

    async def _remove_view(self) -> None:
        view, idx = self.view, self.view_index
        self.view = None
        self.view_index = None
        if view is not None:
            view.stop()
        if idx is not None and idx < len(self.messages):
            await self._edit(idx, view=None)

    async def finish(self) -> None:
        self.terminal = True
        await self._remove_view()

    async def fail(self, error_text: str) -> None:
        self.terminal = True
        if self.view is not None:
            self.view.stop()
            self.view = None
        self.view_index = None
        for idx, content in enumerate(list(self.contents)):
            struck = f"~~{content}~~" if content.strip() and content != EMPTY_OUTPUT_TEXT else content
            await self._edit(idx, content=struck, view=None)
        await self.messages[-1].reply(
            chunk_text(error_text or "Unknown error.", self.chunk_limit)[0],
            mention_author=False,
            allowed_mentions=NO_MENTIONS,
        )

    async def cancelled(self) -> None:
        await self.fail(CANCELLED_TEXT)
