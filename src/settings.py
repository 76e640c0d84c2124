"""Static configuration for betchat.

All user-editable settings (contact search, realtime, logging) live in a
single JSON file for quick edits without touching Python. Credentials come
from the environment (see client.py).
"""

import json
import os

from core.config import ChatSettings, ContactSearchConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("BETCHAT_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Postgres schema whose tables are exposed through PostgREST/Realtime.
DB_SCHEMA = _CONFIG.get("schema", "public")

# Contact search: minimum term length before querying and result cap.
_contacts = _CONFIG.get("contacts", {})
CONTACT_MIN_CHARS = int(_contacts.get("min_search_chars", 2))
CONTACT_SEARCH_LIMIT = int(_contacts.get("search_limit", 20))

# Realtime: wait before re-subscribing after a dropped channel.
_realtime = _CONFIG.get("realtime", {})
RESUBSCRIBE_DELAY_SECONDS = float(_realtime.get("resubscribe_delay_seconds", 1.0))

# Deep link opened from password-reset emails.
_auth = _CONFIG.get("auth", {})
PASSWORD_RESET_REDIRECT = _auth.get("password_reset_redirect")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})


def chat_settings() -> ChatSettings:
    return ChatSettings(
        contacts=ContactSearchConfig(min_chars=CONTACT_MIN_CHARS, limit=CONTACT_SEARCH_LIMIT),
        resubscribe_delay_seconds=RESUBSCRIBE_DELAY_SECONDS,
    )
