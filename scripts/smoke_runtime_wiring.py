from __future__ import annotations

import importlib
import sys
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class _DummyInference:
    models = ["gpu:qwen3-4b-instruct", "gpu:qwen3-32b"]

    def stream_chat(self, **kwargs):
        yield "ok"

    def complete(self, **kwargs):
        return "ok"


def _try_import_or_skip(module_name: str, pip_name: str | None = None) -> bool:
    try:
        importlib.import_module(module_name)
        return True
    except ModuleNotFoundError:
        install_name = pip_name or module_name
        print(
            f"Smoke wiring check skipped: missing dependency '{module_name}'. "
            f"Install requirements and retry (e.g. `pip install {install_name}` "
            f"or `pip install -e .`)."
        )
        return False


def _main() -> int:
    if not _try_import_or_skip("discord", "discord.py"):
        return 0
    if not _try_import_or_skip("lupa"):
        return 0

    import discord
    from discord.ext import commands
    from config.catalog import load_catalog
    from config.defaults import SCRIPT_FILES
    from misc.runtime_deps import HostServices
    from misc.runtime_wiring import wire_bot_runtime
    from scripting.registry import build_registry
    from scripting.runtime import load_script_bundle

    catalog, warning = load_catalog(str(ROOT / "config" / "catalog.yml"))
    if warning:
        raise RuntimeError(warning)
    services = HostServices(
        inference=_DummyInference(),
        currency=SimpleNamespace(),
        comfy=None,
        http_client=None,
        catalog=catalog,
    )
    scripts_dir = str(ROOT / "scripts")
    registry = build_registry(load_script_bundle(scripts_dir, SCRIPT_FILES), services)

    intents = discord.Intents.none()
    bot = commands.Bot(command_prefix="!", intents=intents)
    wire_bot_runtime(
        bot,
        services=services,
        registry=registry,
        scripts_dir=scripts_dir,
        script_files=SCRIPT_FILES,
        allowed_channel_ids={123456789012345678},
        user_is_owner=lambda user: True,
        message_update_interval=1.0,
        execution_timeout=60.0,
        lua_max_memory=None,
        replace_newlines=True,
        interaction_capacity=10,
        reply_chain_max_depth=10,
    )

    expected_slash = {"ask", "askchorus", "convert", "execute", "paint", "translate"}
    existing_slash = {cmd.name for cmd in bot.tree.get_commands(type=discord.AppCommandType.chat_input)}
    missing = sorted(expected_slash - existing_slash)
    if missing:
        raise RuntimeError(f"Missing expected slash commands: {missing}")

    if bot.tree.get_command("Execute this code block", type=discord.AppCommandType.message) is None:
        raise RuntimeError("Missing the message context menu")

    missing_prefix = sorted({"reload", "sync"} - set(bot.all_commands.keys()))
    if missing_prefix:
        raise RuntimeError(f"Missing expected owner commands: {missing_prefix}")

    handlers = (getattr(bot, "on_ready", None), getattr(bot, "on_message", None))
    if any(getattr(h, "__module__", None) != "misc.events_runtime" for h in handlers):
        raise RuntimeError("Runtime events were not registered")

    print("Smoke wiring check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
