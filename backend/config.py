"""
Central configuration for the threading backend.

All settings loaded from .env file or environment variables.
See .env.example for available options.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
load_dotenv(Path(__file__).parent / ".env")

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./threads.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Linking heuristics
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.6"))
CONTEXT_WINDOW_MS = int(os.getenv("CONTEXT_WINDOW_MS", str(5 * 60 * 1000)))
BRANCH_KEYWORDS = [
    kw.strip()
    for kw in os.getenv(
        "BRANCH_KEYWORDS",
        "but,however,alternatively,on the other hand,meanwhile"
    ).split(",")
    if kw.strip()
]

# Summaries are reused for one hour unless overridden
SUMMARY_CACHE_TTL_MS = int(os.getenv("SUMMARY_CACHE_TTL_MS", str(60 * 60 * 1000)))

# OpenRouter API key (AI summaries are disabled without it)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# Model used for AI summaries (e.g., "anthropic/claude-sonnet-4")
LLM_MODEL = os.getenv("LLM_MODEL", "openai/gpt-oss-20b")

# Protocol backend: "matrix" (homeserver over HTTP) or "memory" (local only)
PROTOCOL_BACKEND = os.getenv("PROTOCOL_BACKEND", "memory")

MATRIX_HOMESERVER = os.getenv("MATRIX_HOMESERVER", "https://matrix.org")
MATRIX_ACCESS_TOKEN = os.getenv("MATRIX_ACCESS_TOKEN")
MATRIX_USER_ID = os.getenv("MATRIX_USER_ID")

# Summary provider: "openrouter" (needs OPENROUTER_API_KEY) or "mock"
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openrouter")
