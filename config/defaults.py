DEFAULT_MESSAGE_UPDATE_INTERVAL_MS = 1000  # lower values get throttled by Discord
DISCORD_MAX_MESSAGE_LEN = 1900  # keep under 2000 hard limit
DEFAULT_SCRIPTS_DIR = "scripts"
SCRIPT_FILES = ("main.lua", "commands.lua")
DEFAULT_CATALOG_PATH = "config/catalog.yml"

INITIAL_OUTPUT_TEXT = "Executing..."
CANCELLED_TEXT = "The generation was cancelled."
PRINT_LOG_HEADER = "**Print Log**"

# Discord interaction tokens live for 15 minutes
DEFAULT_EXECUTION_TIMEOUT_SECONDS = 840
DEFAULT_LUA_MAX_MEMORY_MB = 256
CANCEL_CHECK_INSTRUCTIONS = 10000
MAX_SLEEP_MS = 60_000
CANCEL_GRACE_SECONDS = 5.0
CANCEL_POLL_SECONDS = 0.25

SEED_MIN = 1
SEED_MAX = 2147483647

INTERACTION_CONTEXT_CAPACITY = 1000
REPLY_CHAIN_MAX_DEPTH = 50

DEFAULT_INFERENCE_CONCURRENCY = 4
OPENAI_MAX_RETRIES = 2

HTTP_TIMEOUT_SECONDS = 60.0
HTTP_RETRY_ATTEMPTS = 3
HTTP_RETRY_BASE_DELAY_SECONDS = 0.5
HTTP_RETRY_MAX_DELAY_SECONDS = 8.0
FETCH_MAX_BYTES = 25 * 1024 * 1024

EXCHANGE_API_URL = "https://v6.exchangerate-api.com/v6/{api_key}/latest/{base}"
CURRENCY_CACHE_TTL_SECONDS = 24 * 60 * 60
CURRENCY_MIN_REQUEST_INTERVAL_SECONDS = 60 * 60
CURRENCY_INTERMEDIATES = ("USD", "EUR", "GBP")

DEFAULT_COMFY_URL = "http://127.0.0.1:8188"
COMFY_POLL_INTERVAL_SECONDS = 1.0
COMFY_TIMEOUT_SECONDS = 600

EXECUTE_COMMAND_NAME = "execute"
EXECUTE_MESSAGE_COMMAND_NAME = "Execute this code block"
