import os

import discord
import httpx
from discord.ext import commands
from openai import OpenAI
from config.catalog import load_catalog
from config.defaults import DEFAULT_CATALOG_PATH
from config.defaults import DEFAULT_COMFY_URL
from config.defaults import DEFAULT_EXECUTION_TIMEOUT_SECONDS
from config.defaults import DEFAULT_INFERENCE_CONCURRENCY
from config.defaults import DEFAULT_LUA_MAX_MEMORY_MB
from config.defaults import DEFAULT_MESSAGE_UPDATE_INTERVAL_MS
from config.defaults import DEFAULT_SCRIPTS_DIR
from config.defaults import FETCH_MAX_BYTES
from config.defaults import HTTP_TIMEOUT_SECONDS
from config.defaults import INTERACTION_CONTEXT_CAPACITY
from config.defaults import OPENAI_MAX_RETRIES
from config.defaults import REPLY_CHAIN_MAX_DEPTH
from config.defaults import SCRIPT_FILES
from config.env import env_flag
from config.env import env_float
from config.env import env_int
from config.env import parse_id_set
from misc.discord_gates import user_in_owner_set
from misc.runtime_deps import HostServices
from misc.runtime_wiring import wire_bot_runtime
from scripting.registry import build_registry
from scripting.runtime import load_script_bundle
from services.comfy import ComfyClient
from services.currency import CurrencyConverter
from services.inference import InferenceService

# =========================
# ENV
# =========================
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None

if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN env var")
if not OPENAI_API_KEY:
    print("[CFG] OPENAI_API_KEY not set; assuming an inference server that needs no key")

MESSAGE_UPDATE_INTERVAL_MS = env_int(
    "SCRIPTBOT_MESSAGE_UPDATE_INTERVAL_MS", DEFAULT_MESSAGE_UPDATE_INTERVAL_MS, minimum=0
)
REPLACE_NEWLINES = env_flag("SCRIPTBOT_REPLACE_NEWLINES", True)
SCRIPTS_DIR = os.getenv("SCRIPTBOT_SCRIPTS_DIR", DEFAULT_SCRIPTS_DIR).strip() or DEFAULT_SCRIPTS_DIR
CATALOG_PATH = os.getenv("SCRIPTBOT_CATALOG_PATH", DEFAULT_CATALOG_PATH).strip() or DEFAULT_CATALOG_PATH
COMFY_URL = os.getenv("SCRIPTBOT_COMFY_URL", DEFAULT_COMFY_URL).strip()
EXCHANGE_API_KEY = os.getenv("SCRIPTBOT_EXCHANGE_API_KEY", "").strip()
INFERENCE_CONCURRENCY = env_int("SCRIPTBOT_INFERENCE_CONCURRENCY", DEFAULT_INFERENCE_CONCURRENCY, minimum=1)
EXECUTION_TIMEOUT_SECONDS = env_float(
    "SCRIPTBOT_EXECUTION_TIMEOUT_SECONDS", float(DEFAULT_EXECUTION_TIMEOUT_SECONDS), minimum=1.0
)
LUA_MAX_MEMORY_MB = env_int("SCRIPTBOT_LUA_MAX_MEMORY_MB", DEFAULT_LUA_MAX_MEMORY_MB, minimum=0)
OWNER_USER_IDS = parse_id_set(os.getenv("SCRIPTBOT_OWNER_USER_IDS"))
ALLOWED_CHANNEL_IDS = parse_id_set(os.getenv("SCRIPTBOT_ALLOWED_CHANNEL_IDS"))

print(
    f"[CFG] scripts={SCRIPTS_DIR} catalog={CATALOG_PATH} comfy={COMFY_URL or '(disabled)'} "
    f"update_interval_ms={MESSAGE_UPDATE_INTERVAL_MS} timeout_s={EXECUTION_TIMEOUT_SECONDS:.0f} "
    f"lua_mem_mb={LUA_MAX_MEMORY_MB or 'unlimited'} inference_slots={INFERENCE_CONCURRENCY} "
    f"owners={len(OWNER_USER_IDS)} channels={'all' if not ALLOWED_CHANNEL_IDS else len(ALLOWED_CHANNEL_IDS)}"
)

# =========================
# SHARED SERVICES
# =========================
CATALOG, catalog_warning = load_catalog(CATALOG_PATH)
if catalog_warning:
    print(f"[CFG] {catalog_warning}")

client = OpenAI(api_key=OPENAI_API_KEY or "none", base_url=OPENAI_BASE_URL, max_retries=OPENAI_MAX_RETRIES)
http_client = httpx.Client(timeout=HTTP_TIMEOUT_SECONDS, headers={"User-Agent": "scriptbot/1.0"})

inference = InferenceService(client, fallback_models=CATALOG.llm_models, max_concurrency=INFERENCE_CONCURRENCY)
inference.discover_models()

SERVICES = HostServices(
    inference=inference,
    currency=CurrencyConverter(http_client, api_key=EXCHANGE_API_KEY),
    comfy=ComfyClient(http_client, base_url=COMFY_URL) if COMFY_URL else None,
    http_client=http_client,
    catalog=CATALOG,
    fetch_max_bytes=FETCH_MAX_BYTES,
)

LUA_MAX_MEMORY = LUA_MAX_MEMORY_MB * 1024 * 1024 if LUA_MAX_MEMORY_MB else None

# Startup aborts on a malformed command descriptor
REGISTRY = build_registry(load_script_bundle(SCRIPTS_DIR, SCRIPT_FILES), SERVICES, max_memory=LUA_MAX_MEMORY)


def user_is_owner(user: discord.abc.User) -> bool:
    return user_in_owner_set(user, OWNER_USER_IDS)


intents = discord.Intents.default()
intents.message_content = True

bot = commands.Bot(command_prefix="!", intents=intents)

wire_bot_runtime(
    bot,
    services=SERVICES,
    registry=REGISTRY,
    scripts_dir=SCRIPTS_DIR,
    script_files=SCRIPT_FILES,
    allowed_channel_ids=ALLOWED_CHANNEL_IDS,
    user_is_owner=user_is_owner,
    message_update_interval=MESSAGE_UPDATE_INTERVAL_MS / 1000.0,
    execution_timeout=EXECUTION_TIMEOUT_SECONDS,
    lua_max_memory=LUA_MAX_MEMORY,
    replace_newlines=REPLACE_NEWLINES,
    interaction_capacity=INTERACTION_CONTEXT_CAPACITY,
    reply_chain_max_depth=REPLY_CHAIN_MAX_DEPTH,
)

bot.run(DISCORD_TOKEN)
