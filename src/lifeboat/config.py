"""Central configuration for paths and constants."""

import os
from pathlib import Path

# Data directory, overridable with the LIFEBOAT_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("LIFEBOAT_DATA_DIR", str(Path.home() / ".lifeboat"))
)

# Database paths
PROFILES_DB_PATH = DATA_DIR / "profiles.db"

# LLM provider (OpenRouter, OpenAI-compatible chat completions)
API_URL = os.environ.get("LIFEBOAT_API_URL", "https://openrouter.ai/api/v1")
API_KEY_ENV = "OPENROUTER_API_KEY"
DEFAULT_MODEL = os.environ.get("LIFEBOAT_MODEL", "google/gemini-2.5-flash")
CHAT_MODEL = os.environ.get("LIFEBOAT_CHAT_MODEL", DEFAULT_MODEL)
REQUEST_TIMEOUT = 300.0  # Seconds; extraction calls over large chunks are slow

# Output token limits per call
EXTRACTION_MAX_TOKENS = 8192
MERGE_MAX_TOKENS = 8192
TIMELINE_MAX_TOKENS = 4096
SYSTEM_PROMPT_MAX_TOKENS = 4000
CHAT_MAX_TOKENS = 1000

EXTRACTION_TEMPERATURE = 0.3
CHAT_TEMPERATURE = 0.8

# Chunking parameters
CHUNK_SIZE = 500_000  # ~125K tokens per extraction call
MAX_TOTAL_CHARS = 5_000_000  # Beyond this the corpus is sampled
CHARS_PER_MESSAGE_ESTIMATE = 500  # Average formatted message size used for the sampling stride
SECONDS_PER_CHUNK_ESTIMATE = 30

# Merge targets handed to the model
VOICE_EXAMPLES_TARGET = (8, 10)
CORE_MEMORIES_TARGET = (20, 25)
SYSTEM_PROMPT_WORD_TARGET = 2500

# Injection scanning
SCAN_MIN_LENGTH = 30  # Structured scans skip shorter string leaves
FINDING_PATTERN_MAX = 60
FINDING_MATCH_MAX = 80

DEFAULT_PROFILE_NAME = "Unnamed Companion"

# Roles kept from any export format
INCLUDED_ROLES = {"user", "assistant"}
