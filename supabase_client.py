# supabase_client.py
from typing import Optional

from supabase import create_client, Client

from settings import Settings, load_settings


def get_supabase(settings: Optional[Settings] = None) -> Client:
    settings = settings or load_settings()
    if not settings.supabase_url or not settings.supabase_key:
        # server-side only; the service role key never reaches the sandbox
        raise RuntimeError("Supabase credentials not found. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.")
    return create_client(settings.supabase_url, settings.supabase_key)


def public_url(base_url: str, bucket: str, path: str) -> str:
    # For public buckets you can derive the URL directly:
    base = base_url.rstrip("/")
    return f"{base}/storage/v1/object/public/{bucket}/{path.lstrip('/')}"
