from __future__ import annotations

import asyncio

from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from misc.commands.commands_scripted import install_scripted_commands
from scripting.errors import RegistrationError
from scripting.registry import build_registry
from scripting.runtime import load_script_bundle


def reload_registry(deps: CommandDeps):
    """Re-read the scripts and validate them. Raises RegistrationError; the old registry stays."""
    bundle = load_script_bundle(deps.scripts_dir, deps.script_files)
    return build_registry(bundle, deps.services, max_memory=deps.lua_max_memory)


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    @bot.command(name="reload")
    async def cmd_reload(ctx: commands.Context):
        if not gates.user_is_owner(ctx.author):
            await ctx.send("This command is owner-only.")
            return

        try:
            registry = await asyncio.to_thread(reload_registry, deps)
        except RegistrationError as e:
            print(f"[Registry] reload failed: {e}")
            await ctx.reply(f"Reload failed, keeping the previous commands:\n```\n{str(e)[:1800]}\n```", mention_author=False)
            return

        deps.registry_holder.replace(registry)
        bot._scripted_command_names = install_scripted_commands(
            bot.tree,
            registry,
            deps=deps,
            previous=set(getattr(bot, "_scripted_command_names", set())),
        )
        synced = await deps.sync_commands()
        await ctx.reply(
            f"Reloaded {len(registry.commands)} command(s): {', '.join(registry.names()) or '-'}; synced {synced}.",
            mention_author=False,
        )

    @bot.command(name="sync")
    async def cmd_sync(ctx: commands.Context):
        if not gates.user_is_owner(ctx.author):
            await ctx.send("This command is owner-only.")
            return
        synced = await deps.sync_commands()
        await ctx.reply(f"Synced {synced} application command(s).", mention_author=False)
