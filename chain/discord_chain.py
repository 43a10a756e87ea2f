from __future__ import annotations

import discord
from chain.interaction_store import InteractionContextStore
from chain.resolver import Chain
from chain.resolver import ChainMessage
from config.defaults import REPLY_CHAIN_MAX_DEPTH


def chain_message_from(message: discord.Message) -> ChainMessage:
    author = message.author
    guild = getattr(message, "guild", None)
    return ChainMessage(
        id=int(message.id),
        content=str(message.content or ""),
        author_id=int(author.id),
        author_name=str(getattr(author, "name", "") or ""),
        is_bot=bool(getattr(author, "bot", False)),
        channel_id=int(getattr(message.channel, "id", 0) or 0),
        guild_id=int(guild.id) if guild is not None else None,
        attachments=tuple(str(a.url) for a in (getattr(message, "attachments", None) or [])),
    )


async def referenced_message(message: discord.Message) -> discord.Message | None:
    ref = getattr(message, "reference", None)
    if ref is None or getattr(ref, "message_id", None) is None:
        return None
    resolved = getattr(ref, "resolved", None)
    if isinstance(resolved, discord.Message):
        return resolved
    cached = getattr(ref, "cached_message", None)
    if cached is not None:
        return cached
    try:
        return await message.channel.fetch_message(ref.message_id)
    except discord.HTTPException as e:
        print(f"[Reply] could not fetch referenced message {ref.message_id}: {e}")
        return None


async def walk_reply_chain(message: discord.Message, *, max_depth: int = REPLY_CHAIN_MAX_DEPTH) -> list[discord.Message]:
    """Follow reply links from `message`; returns the messages oldest first."""
    out = [message]
    current = message
    seen = {int(message.id)}
    for _ in range(max(0, int(max_depth))):
        parent = await referenced_message(current)
        if parent is None or int(parent.id) in seen:
            break
        seen.add(int(parent.id))
        out.append(parent)
        current = parent
    out.reverse()
    return out


def interaction_command_name(message) -> str:
    for attr in ("interaction_metadata", "interaction"):
        meta = getattr(message, attr, None)
        name = str(getattr(meta, "name", "") or "").strip()
        if name:
            # subcommands arrive as "group sub"
            return name.split()[0]
    return ""


async def build_chain(
    message: discord.Message,
    *,
    store: InteractionContextStore,
    bot_user_id: int,
    max_depth: int = REPLY_CHAIN_MAX_DEPTH,
) -> Chain | None:
    """
    Build the reply chain ending at `message`, or None when it is not a reply to this bot
    or no originating command can be recognized.
    """
    raw = await walk_reply_chain(message, max_depth=max_depth)
    if len(raw) < 2 or int(raw[-2].author.id) != int(bot_user_id):
        return None

    ours = [m for m in raw if int(m.author.id) == int(bot_user_id)]
    command_name = ""
    options: dict = {}
    for candidate in reversed(ours):
        context = store.get(int(candidate.id))
        if context is not None:
            command_name = context.command_name
            options = dict(context.options)
            break
    if not command_name:
        for candidate in ours:
            command_name = interaction_command_name(candidate)
            if command_name:
                break
    if not command_name:
        return None

    return Chain(
        messages=tuple(chain_message_from(m) for m in raw),
        command_name=command_name,
        options=options,
    )
