"""
    This module contains the configuration required for the application to run
    NOTE: Values come from the environment (a local .env file is loaded first), with defaults for everything except secrets
    NOTE: DATABASE_URL and GOOGLE_API_KEY have no defaults. load_settings() refuses to start without them
"""

"""
Why does AppContext carry an on_status callable?
The db_query tool calls on_status while it works, and the generator in run_chat_stream_events picks up
those messages and sends them to the browser as status events.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from dotenv import load_dotenv

from src.errors import ConfigurationError
from src.schemas import Identity

load_dotenv()

SUPPORT_MODEL = os.getenv("SUPPORT_MODEL", "google-gla:gemini-2.0-flash")

# Every agent run is capped so a tool-call loop can't run away with the bill
SUPPORT_REQUEST_LIMIT = 6
SUPPORT_TOTAL_TOKENS_LIMIT = 8000

# Retries for low quality model output (ModelRetry from the output validator)
MAX_RETRIES = 2

# Retries for the model call itself (transient provider errors). 2 extra attempts, delay doubling, capped at 5s
MODEL_MAX_RETRIES = int(os.getenv("MODEL_MAX_RETRIES", "2"))
MODEL_RETRY_BASE_DELAY = float(os.getenv("MODEL_RETRY_BASE_DELAY", "0.5"))
MODEL_RETRY_MAX_DELAY = float(os.getenv("MODEL_RETRY_MAX_DELAY", "5"))

DB_CONNECT_TIMEOUT = float(os.getenv("DB_CONNECT_TIMEOUT", "3"))
DB_STATEMENT_TIMEOUT = float(os.getenv("DB_STATEMENT_TIMEOUT", "5"))

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "20"))
RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_BLOCK_SECONDS = float(os.getenv("RATE_LIMIT_BLOCK_SECONDS", "300"))

STORE_NAME = "TechTrend Innovations"

GREETING_REPLY = "Hello! How can I assist you today?"
FALLBACK_REPLY = "Sorry, I encountered an issue. Please try again or contact support."


@dataclass(frozen=True)
class Settings:
    """Startup settings. Secrets are required, everything else has a default."""
    database_url: str
    google_api_key: str
    support_model: str = SUPPORT_MODEL
    db_connect_timeout: float = DB_CONNECT_TIMEOUT


def load_settings() -> Settings:
    """Read the settings from the environment, failing fast when a secret is missing."""
    database_url = os.getenv("DATABASE_URL", "").strip()
    google_api_key = os.getenv("GOOGLE_API_KEY", "").strip()

    missing = [name for name, value in (("DATABASE_URL", database_url), ("GOOGLE_API_KEY", google_api_key)) if not value]
    if missing:
        raise ConfigurationError(f"Missing required environment variable(s): {', '.join(missing)}")

    return Settings(database_url=database_url, google_api_key=google_api_key)


@dataclass
class AppContext:
    """
        Per-request context: the shared store plus the caller's identity for this request
        NOTE: identity is extracted once from the conversation and never reassigned mid-request
    """
    store: Any
    identity: Identity | None = None
    # on_status is an optional async function that takes a status message string
    on_status: Callable[[str], Awaitable[None]] | None = None
    # Every db_query result of the current run, in call order
    tool_results: list = field(default_factory=list)
