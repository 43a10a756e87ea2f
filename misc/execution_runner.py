from __future__ import annotations

import threading

import discord
from chain.interaction_store import InteractionContext
from chain.interaction_store import InteractionContextStore
from chain.resolver import Chain
from chain.resolver import ResolutionError
from chain.resolver import resolve
from output.cancel_view import build_cancel_view
from output.discord_sink import NO_MENTIONS
from output.discord_sink import DiscordMessageSink
from scripting.executor import EntryPoint
from scripting.executor import ExecutionContext
from scripting.executor import ExecutionOutcome
from scripting.executor import ScriptExecutor


def _ids(user, channel, guild) -> dict:
    return {
        "user_id": str(getattr(user, "id", "") or ""),
        "channel_id": str(getattr(channel, "id", "") or ""),
        "guild_id": str(guild.id) if guild is not None else None,
    }


class ExecutionRunner:
    """Connects Discord entry surfaces to the executor and records what each run produced."""

    def __init__(
        self,
        *,
        executor: ScriptExecutor,
        interaction_store: InteractionContextStore,
        get_registry,
        message_update_interval: float,
        execution_timeout: float,
    ) -> None:
        self.executor = executor
        self.interaction_store = interaction_store
        self.get_registry = get_registry
        self.message_update_interval = float(message_update_interval)
        self.execution_timeout = float(execution_timeout)

    def _view_factory(self, owner_user_id: int, cancel_event: threading.Event):
        return lambda: build_cancel_view(owner_user_id=int(owner_user_id), cancel_event=cancel_event)

    def _record(self, message_ids: list[int], *, command_name: str, options: dict, user, channel, guild) -> None:
        context = InteractionContext(
            command_name=command_name,
            options=dict(options),
            user_id=int(getattr(user, "id", 0) or 0),
            channel_id=int(getattr(channel, "id", 0) or 0),
            guild_id=int(guild.id) if guild is not None else None,
        )
        self.interaction_store.put_many(message_ids, context)

    async def run_interaction(
        self,
        interaction: discord.Interaction,
        entry: EntryPoint,
        options: dict,
    ) -> ExecutionOutcome:
        cancel_event = threading.Event()
        sink = await DiscordMessageSink.for_interaction(
            interaction,
            view_factory=self._view_factory(interaction.user.id, cancel_event),
        )
        ids = _ids(interaction.user, interaction.channel, interaction.guild)
        ids["user_name"] = str(getattr(interaction.user, "name", "") or "")
        ctx = ExecutionContext(entry=entry, params=options, cancel_event=cancel_event, interaction=ids)
        print(f"[Exec] {entry.label} started by {interaction.user} options={sorted(options)}")
        outcome = await self.executor.run(
            ctx,
            self.get_registry().bundle,
            sink=sink,
            min_interval=self.message_update_interval,
            timeout=self.execution_timeout,
        )
        if outcome.ok and entry.kind == "command":
            self._record(
                sink.message_ids,
                command_name=entry.name,
                options=options,
                user=interaction.user,
                channel=interaction.channel,
                guild=interaction.guild,
            )
        return outcome

    async def run_reply(self, message: discord.Message, chain: Chain) -> ExecutionOutcome | None:
        descriptor = self.get_registry().get(chain.command_name)
        if descriptor is None or descriptor.reply is None:
            return None
        try:
            resolved = resolve(chain, descriptor.reply)
        except ResolutionError as e:
            print(f"[Reply] /{chain.command_name} chain from message {message.id} unresolved: {e}")
            await message.reply(str(e), mention_author=False, allowed_mentions=NO_MENTIONS)
            return None

        cancel_event = threading.Event()
        sink = await DiscordMessageSink.for_reply(
            message,
            view_factory=self._view_factory(message.author.id, cancel_event),
        )
        ctx = ExecutionContext(
            entry=EntryPoint.reply(chain.command_name),
            params=resolved.params,
            cancel_event=cancel_event,
            interaction=_ids(message.author, message.channel, message.guild),
            chain=resolved.to_script_table(),
        )
        print(f"[Reply] /{chain.command_name} continuing chain of {len(chain.messages)} message(s)")
        outcome = await self.executor.run(
            ctx,
            self.get_registry().bundle,
            sink=sink,
            min_interval=self.message_update_interval,
            timeout=self.execution_timeout,
        )
        if outcome.ok:
            self._record(
                sink.message_ids,
                command_name=chain.command_name,
                options=dict(chain.options),
                user=message.author,
                channel=message.channel,
                guild=message.guild,
            )
        return outcome
