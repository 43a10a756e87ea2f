from __future__ import annotations

from chain.interaction_store import InteractionContextStore
from misc.commands.command_deps import CommandDeps
from misc.commands.command_deps import CommandGates
from misc.commands.commands_execute import register as register_execute
from misc.commands.commands_owner import register as register_owner
from misc.commands.commands_scripted import register as register_scripted
from misc.events_runtime import register_runtime_events
from misc.execution_runner import ExecutionRunner
from misc.runtime_deps import HostServices
from misc.runtime_deps import RegistryHolder
from misc.runtime_deps import RuntimeBootDeps
from misc.runtime_deps import RuntimeDeps
from scripting.executor import ScriptExecutor


def wire_bot_runtime(
    bot,
    *,
    services: HostServices,
    registry,
    scripts_dir: str,
    script_files: tuple[str, ...],
    allowed_channel_ids: set[int],
    user_is_owner,
    message_update_interval: float,
    execution_timeout: float,
    lua_max_memory: int | None,
    replace_newlines: bool,
    interaction_capacity: int,
    reply_chain_max_depth: int,
) -> RegistryHolder:
    registry_holder = RegistryHolder(registry)
    interaction_store = InteractionContextStore(interaction_capacity)
    runner = ExecutionRunner(
        executor=ScriptExecutor(services, max_memory=lua_max_memory),
        interaction_store=interaction_store,
        get_registry=registry_holder.get,
        message_update_interval=message_update_interval,
        execution_timeout=execution_timeout,
    )

    async def sync_commands() -> int:
        synced = await bot.tree.sync()
        print(f"[Bot] synced {len(synced)} application command(s)")
        return len(synced)

    command_deps = CommandDeps(
        runner=runner,
        registry_holder=registry_holder,
        services=services,
        scripts_dir=scripts_dir,
        script_files=script_files,
        lua_max_memory=lua_max_memory,
        replace_newlines=replace_newlines,
        sync_commands=sync_commands,
    )
    command_gates = CommandGates(
        allowed_channel_ids=allowed_channel_ids,
        user_is_owner=user_is_owner,
    )

    register_scripted(bot, deps=command_deps, gates=command_gates)
    register_execute(bot, deps=command_deps, gates=command_gates)
    register_owner(bot, deps=command_deps, gates=command_gates)

    runtime_deps = RuntimeDeps(
        runner=runner,
        interaction_store=interaction_store,
        allowed_channel_ids=allowed_channel_ids,
        reply_chain_max_depth=reply_chain_max_depth,
    )
    runtime_boot = RuntimeBootDeps(sync_commands=sync_commands)
    register_runtime_events(bot, deps=runtime_deps, boot=runtime_boot)
    return registry_holder
