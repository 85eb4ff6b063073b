from __future__ import annotations

from supabase import Client, create_client

from src.config import Settings, settings


def create_supabase_client(config: Settings) -> Client:
    """Build the service-role client once; callers receive it by reference."""
    if not config.supabase_url or not config.supabase_service_role_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")
    return create_client(config.supabase_url, config.supabase_service_role_key)


supabase = create_supabase_client(settings)
