from __future__ import annotations

from typing import Any

from skybook.config import get_settings


def get_client() -> Any:
    """Build a Supabase client from the configured URL and key."""
    try:
        from supabase import create_client
    except Exception as exc:  # pragma: no cover - import path only exercised in supabase mode
        raise RuntimeError("supabase package is required for SKYBOOK_STORAGE_BACKEND=supabase") from exc

    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError("SKYBOOK_SUPABASE_URL and SKYBOOK_SUPABASE_KEY must be set for the supabase backend")
    return create_client(settings.supabase_url, settings.supabase_key)
