# settings.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _default_site_dir() -> Path:
    # On Vercel (serverless), only /tmp is writable. Use local folder otherwise.
    if os.getenv("VERCEL") or os.getenv("AWS_LAMBDA_FUNCTION_VERSION"):
        return Path(os.getenv("SITE_DIR", "/tmp/site"))
    return Path(os.getenv("SITE_DIR") or Path(__file__).parent / "site")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    model: str
    planner_model: str
    summary_model: str
    image_model: str
    image_size: str
    model_timeout: float
    image_timeout: float
    image_workers: int
    cycle_lease_seconds: float
    storage_backend: str
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    sessions_table: str
    asset_bucket: str
    site_dir: Path
    public_asset_base_url: str
    include_html_outline: bool
    log_level: str


def load_settings() -> Settings:
    """
    Read configuration from the environment (and a .env file, if present).
    """
    load_dotenv()
    model = os.getenv("OPENAI_MODEL", "gpt-5")
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
        model=model,
        planner_model=os.getenv("OPENAI_PLANNER_MODEL") or model,
        summary_model=os.getenv("OPENAI_SUMMARY_MODEL", "gpt-5-mini"),
        image_model=os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1"),
        image_size=os.getenv("OPENAI_IMAGE_SIZE", "1024x1024"),
        model_timeout=float(_env_int("MODEL_TIMEOUT_SECONDS", 120)),
        image_timeout=float(_env_int("IMAGE_TIMEOUT_SECONDS", 180)),
        image_workers=max(1, _env_int("IMAGE_WORKERS", 4)),
        cycle_lease_seconds=float(_env_int("CYCLE_LEASE_SECONDS", 600)),
        storage_backend=os.getenv("STORAGE_BACKEND", "supabase").strip().lower(),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        sessions_table=os.getenv("SESSIONS_TABLE", "game_sessions"),
        asset_bucket=os.getenv("ASSET_BUCKET", "game-assets"),
        site_dir=_default_site_dir(),
        public_asset_base_url=os.getenv("PUBLIC_ASSET_BASE_URL", "http://127.0.0.1:8000/assets").rstrip("/"),
        include_html_outline=_env_bool("INCLUDE_HTML_OUTLINE", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT, handlers=handlers)
