# app/core/config.py
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (admin client: print jobs, stock RPCs)
      - DEPLOYMENT_MODE: which online channel feeds the Pending tab
        ("partner_site" or "online_menu")
      - PARTNER_SITE_PATTERNS: JSON list of domains / globs identifying the
        partner storefront, e.g. '["*.parceiro.com.br", "pedidos.example"]'
    """

    PROJECT_NAME: str = "Comanda Orders API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Order classification
    DEPLOYMENT_MODE: Literal["partner_site", "online_menu"] = "online_menu"
    PARTNER_SITE_PATTERNS: list[str] = []

    # Local calendar used for "today", credit due dates and the All tab
    TIMEZONE: str = "America/Sao_Paulo"

    # Read models only look this far back
    ORDER_RETENTION_MONTHS: int = 3

    # Change-notification coalescing
    REFRESH_MIN_INTERVAL_SECONDS: float = 3.0
    NEW_ORDER_MIN_SPACING_SECONDS: float = 2.0

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
