from __future__ import annotations

import discord
from chain.discord_chain import build_chain
from discord.ext import commands
from misc.discord_gates import message_in_allowed_channels
from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps


def is_reply_candidate(message, bot_user) -> bool:
    if bot_user is None or message.author.bot:
        return False
    if getattr(message, "reference", None) is None:
        return False
    return not (message.content or "").lstrip().startswith("!")


def register_runtime_events(
    bot: commands.Bot,
    *,
    deps: RuntimeDeps,
    boot: RuntimeBootDeps,
) -> None:
    @bot.event
    async def on_ready():
        print(f"[Bot] online as {bot.user}")
        if not getattr(bot, "_commands_synced", False):
            await boot.sync_commands()
            bot._commands_synced = True

    @bot.event
    async def on_message(message: discord.Message):
        if message.author.bot:
            return

        if (message.content or "").lstrip().startswith("!"):
            await bot.process_commands(message)
            return

        if not is_reply_candidate(message, bot.user):
            return
        if not message_in_allowed_channels(message, deps.allowed_channel_ids):
            return

        try:
            chain = await build_chain(
                message,
                store=deps.interaction_store,
                bot_user_id=int(bot.user.id),
                max_depth=deps.reply_chain_max_depth,
            )
            if chain is None:
                return
            await deps.runner.run_reply(message, chain)
        except Exception as e:
            print(f"[Reply] Error handling reply {message.id}: {type(e).__name__}: {e}")
            try:
                await message.reply("Something went wrong continuing that conversation. Check logs.", mention_author=False)
            except discord.HTTPException as send_error:
                print(f"[Reply] Could not report error: {send_error}")
