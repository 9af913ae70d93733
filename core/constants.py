"""
Constants for Nota's AI provider settings.
"""


# ----- Provider Ids -----

GEMINI_PROVIDER_ID = "gemini"
OLLAMA_PROVIDER_ID = "ollama"
WEBLLM_PROVIDER_ID = "webllm"


# ----- Timing -----

# Seconds allowed for a connection test or model fetch
DEFAULT_REQUEST_TIMEOUT = 30.0

# Seconds between progress samples during a local model load
DEFAULT_LOAD_POLL_INTERVAL = 0.25


# ----- Endpoints -----

DEFAULT_OLLAMA_URL = "http://localhost:11434"


# ----- Default Models -----

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_OLLAMA_MODEL = "llama3.2"
DEFAULT_WEBLLM_MODEL = "Llama-3.2-1B-Instruct-q4f32_1-MLC"


# ----- Generation Defaults -----

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048
DEFAULT_PREFERRED_PROVIDER = GEMINI_PROVIDER_ID
DEFAULT_AUTO_LOAD = True
DEFAULT_AUTO_LOAD_STRATEGY = "smallest"

# Below this much memory a local model load is flagged as risky
LOW_MEMORY_THRESHOLD_GB = 4.0


# ----- Settings Keys -----

SETTINGS_CATEGORY_PROVIDERS = "providers"
PROVIDER_SETTINGS_KEY_PREFIX = "providers."
