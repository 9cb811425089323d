"""Supabase client configuration.

SECURITY NOTICE:
- SB_SECRET_KEY is server-only (NEVER exposed to clients); it backs the
  auth admin API used to create and delete identities
- SB_PUBLISHABLE_KEY validates session JWTs (auth.get_user)

KEY NAMING TRANSITION:
- New Supabase UI (2024+): SB_PUBLISHABLE_KEY / SB_SECRET_KEY
- Legacy (pre-2024): SUPABASE_ANON_KEY / SUPABASE_SERVICE_ROLE_KEY
"""

import logging
import os
from functools import lru_cache

from supabase import Client, create_client

logger = logging.getLogger(__name__)


def _first_env(primary: str, legacy: str) -> str | None:
    value = os.getenv(primary)
    if value:
        return value
    value = os.getenv(legacy)
    if value:
        logger.info(f"Using legacy {legacy} (consider migrating to {primary})")
        return value
    return None


@lru_cache(maxsize=1)
def get_supabase_url() -> str:
    """Get Supabase project URL from environment.

    Raises:
        RuntimeError: If SUPABASE_URL not set
    """
    url = os.getenv("SUPABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_URL environment variable not set. Required for identity operations.")
    return url


@lru_cache(maxsize=1)
def get_supabase_api_key() -> str:
    """Get Supabase publishable key (SB_PUBLISHABLE_KEY, legacy SUPABASE_ANON_KEY).

    Raises:
        RuntimeError: If neither key is set
    """
    key = _first_env("SB_PUBLISHABLE_KEY", "SUPABASE_ANON_KEY")
    if not key:
        raise RuntimeError(
            "Neither SB_PUBLISHABLE_KEY nor SUPABASE_ANON_KEY environment variable is set. "
            "Required for session validation."
        )
    return key


@lru_cache(maxsize=1)
def get_supabase_secret_key() -> str:
    """Get Supabase secret key (SB_SECRET_KEY, legacy SUPABASE_SERVICE_ROLE_KEY).

    SECRET_KEY bypasses RLS and is for admin operations only.

    Raises:
        RuntimeError: If neither key is set
    """
    key = _first_env("SB_SECRET_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    if not key:
        raise RuntimeError(
            "Neither SB_SECRET_KEY nor SUPABASE_SERVICE_ROLE_KEY environment variable is set. "
            "Required for identity provisioning."
        )
    return key


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Get Supabase client for session validation (publishable key)."""
    url = get_supabase_url()
    logger.info("Initializing Supabase client", extra={"supabase_url": url, "key_type": "publishable"})
    return create_client(url, get_supabase_api_key())


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """Get Supabase admin client (secret key) for identity create/delete."""
    url = get_supabase_url()
    logger.info("Initializing Supabase admin client", extra={"supabase_url": url, "key_type": "secret"})
    return create_client(url, get_supabase_secret_key())
