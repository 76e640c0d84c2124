"""Supabase client factory for betchat.

We explicitly build the async client and hand it to the adapters so it is
obvious where the connection is created and which credentials it uses.
"""

from __future__ import annotations

import logging
import os
from getpass import getpass

from dotenv import load_dotenv
from supabase import AsyncClient, acreate_client


async def build_client() -> AsyncClient:
    """Create an async Supabase client from environment variables.

    We read SUPABASE_URL/SUPABASE_KEY via python-dotenv to keep secrets out
    of the repo. The key is the project's public anon key; row-level
    security on the backend scopes every query to the signed-in user.
    """

    load_dotenv()

    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY")

    # Fail fast on missing credentials to avoid confusing 401s later.
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_KEY in environment")

    logging.getLogger(__name__).info("Initializing Supabase client")

    return await acreate_client(url, key)


def login_credentials() -> tuple[str, str]:
    """Return (email, password), prompting for whatever the environment lacks."""

    load_dotenv()
    email = os.getenv("BETCHAT_EMAIL") or input("Email: ").strip()
    password = os.getenv("BETCHAT_PASSWORD") or getpass("Password: ")
    return email, password
