from __future__ import annotations

import inspect
from typing import Any, Optional, Union

import discord
from discord import app_commands
from discord.ext import commands
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from scripting.executor import EntryPoint
from scripting.registry import CommandDescriptor
from scripting.registry import OptionSpec

MAX_AUTOCOMPLETE_RESULTS = 25

_BASE_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "user": discord.User,
    "channel": discord.abc.GuildChannel,
    "role": discord.Role,
    "mentionable": Union[discord.User, discord.Role],
    "attachment": discord.Attachment,
}


def option_annotation(option: OptionSpec) -> Any:
    base = _BASE_TYPES[option.type]
    if option.choices:
        return base
    if option.type == "string" and (option.min_length is not None or option.max_length is not None):
        return app_commands.Range[str, option.min_length, option.max_length]
    if option.type in ("integer", "number") and (option.min_value is not None or option.max_value is not None):
        cast = int if option.type == "integer" else float
        low = cast(option.min_value) if option.min_value is not None else None
        high = cast(option.max_value) if option.max_value is not None else None
        return app_commands.Range[base, low, high]
    return base


def option_value(value: Any) -> Any:
    """Convert a resolved Discord option into something a script can hold."""
    if isinstance(value, discord.Attachment):
        return value.url
    if isinstance(value, (bool, int, float, str)):
        return value
    object_id = getattr(value, "id", None)
    if object_id is not None:
        return str(object_id)
    return str(value)


def filter_suggestions(suggestions: tuple[str, ...], current: str) -> list[str]:
    needle = (current or "").strip().lower()
    if not needle:
        return list(suggestions[:MAX_AUTOCOMPLETE_RESULTS])
    prefix = [s for s in suggestions if s.lower().startswith(needle)]
    contains = [s for s in suggestions if needle in s.lower() and s not in prefix]
    return (prefix + contains)[:MAX_AUTOCOMPLETE_RESULTS]


def _suggestion_callback(suggestions: tuple[str, ...]):
    async def autocomplete(interaction: discord.Interaction, current: str) -> list[app_commands.Choice[str]]:
        return [app_commands.Choice(name=s[:100], value=s) for s in filter_suggestions(suggestions, current)]

    return autocomplete


def build_app_command(descriptor: CommandDescriptor, *, deps: CommandDeps) -> app_commands.Command:
    """
    Build a slash command whose parameters mirror the descriptor's options.

    Parameters get positional names (opt_0, opt_1, ...) renamed to the option names so that
    option names which are Python keywords (`from`, `in`) still work.
    """
    param_names = {f"opt_{idx}": option for idx, option in enumerate(descriptor.options)}

    async def callback(interaction: discord.Interaction, **kwargs):
        options = {
            option.name: option_value(kwargs[param])
            for param, option in param_names.items()
            if kwargs.get(param) is not None
        }
        await deps.runner.run_interaction(interaction, EntryPoint.command(descriptor.name), options)

    parameters = [
        inspect.Parameter("interaction", inspect.Parameter.POSITIONAL_OR_KEYWORD, annotation=discord.Interaction)
    ]
    for param, option in param_names.items():
        annotation = option_annotation(option)
        if option.required:
            parameters.append(inspect.Parameter(param, inspect.Parameter.KEYWORD_ONLY, annotation=annotation))
        else:
            parameters.append(
                inspect.Parameter(param, inspect.Parameter.KEYWORD_ONLY, annotation=Optional[annotation], default=None)
            )
    callback.__signature__ = inspect.Signature(parameters)
    callback.__name__ = f"scripted_{descriptor.name.replace('-', '_')}"
    callback.__qualname__ = callback.__name__

    if param_names:
        app_commands.rename(**{p: o.name for p, o in param_names.items()})(callback)
        app_commands.describe(**{p: o.description for p, o in param_names.items()})(callback)
    choices = {
        p: [app_commands.Choice(name=c.name, value=c.value) for c in o.choices]
        for p, o in param_names.items()
        if o.choices
    }
    if choices:
        app_commands.choices(**choices)(callback)
    completions = {p: _suggestion_callback(o.suggestions) for p, o in param_names.items() if o.suggestions}
    if completions:
        app_commands.autocomplete(**completions)(callback)

    return app_commands.Command(name=descriptor.name, description=descriptor.description, callback=callback)


def install_scripted_commands(tree: app_commands.CommandTree, registry, *, deps: CommandDeps, previous: set[str]) -> set[str]:
    """Replace the previously installed scripted commands with the registry's. Returns the new names."""
    for name in previous:
        tree.remove_command(name, type=discord.AppCommandType.chat_input)
    installed: set[str] = set()
    for name in registry.names():
        tree.add_command(build_app_command(registry.get(name), deps=deps), override=True)
        installed.add(name)
    print(f"[Registry] installed {len(installed)} slash command(s)")
    return installed


def register(
    bot: commands.Bot,
    *,
    deps: CommandDeps,
    gates: CommandGates,
) -> None:
    bot._scripted_command_names = install_scripted_commands(
        bot.tree,
        deps.registry_holder.get(),
        deps=deps,
        previous=set(getattr(bot, "_scripted_command_names", set())),
    )
