from __future__ import annotations

import discord
from config.defaults import EXECUTE_COMMAND_NAME
from config.defaults import EXECUTE_MESSAGE_COMMAND_NAME
from discord import app_commands
from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from scripting.executor import EntryPoint
from scripting.executor import parse_markdown_lua_block

NO_CODE_BLOCK_TEXT = "No ```lua code block found in that message."


def resolve_execute_source(code: str | None, message_id: str | None) -> tuple[str | None, int | None, str | None]:
    """
    Validate `/execute` arguments. Returns (code, message_id, error); exactly one of the
    first two is set when error is None.
    """
    has_code = bool((code or "").strip())
    has_message = bool((message_id or "").strip())
    if has_code == has_message:
        return (None, None, "Provide exactly one of `code` or `message_id`.")
    if has_code:
        return (code, None, None)
    raw = (message_id or "").strip()
    if not raw.isdigit():
        return (None, None, f"`{raw}` is not a message id.")
    return (None, int(raw), None)


def prepare_code(code: str, *, replace_newlines: bool) -> str:
    # slash command options cannot carry real newlines
    return code.replace("\\n", "\n") if replace_newlines else code


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    @app_commands.command(name=EXECUTE_COMMAND_NAME, description="Run Lua code in the sandbox")
    @app_commands.describe(
        code="Lua code to run (use \\n for newlines)",
        message_id="Run the first ```lua block of this message in the channel",
    )
    async def execute_slash(
        interaction: discord.Interaction,
        code: str | None = None,
        message_id: str | None = None,
    ):
        source, target_id, error = resolve_execute_source(code, message_id)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        if target_id is not None:
            try:
                target = await interaction.channel.fetch_message(target_id)
            except discord.HTTPException as e:
                await interaction.response.send_message(f"Could not fetch message {target_id}: {e}", ephemeral=True)
                return
            source = parse_markdown_lua_block(target.content)
            if source is None:
                await interaction.response.send_message(NO_CODE_BLOCK_TEXT, ephemeral=True)
                return
        else:
            source = prepare_code(source, replace_newlines=deps.replace_newlines)
        await deps.runner.run_interaction(interaction, EntryPoint.expression(source), {})

    async def execute_message(interaction: discord.Interaction, message: discord.Message):
        source = parse_markdown_lua_block(message.content)
        if source is None:
            await interaction.response.send_message(NO_CODE_BLOCK_TEXT, ephemeral=True)
            return
        await deps.runner.run_interaction(interaction, EntryPoint.expression(source), {})

    bot.tree.add_command(execute_slash, override=True)
    bot.tree.add_command(
        app_commands.ContextMenu(name=EXECUTE_MESSAGE_COMMAND_NAME, callback=execute_message),
        override=True,
    )
