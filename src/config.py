"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Groofit"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_url: str
    supabase_service_role_key: str  # server-side only, never expose to client
    supabase_db_url: str  # direct postgres connection string for asyncpg
    supabase_jwt_secret: str  # HS256 secret that signs Supabase Auth access tokens
    supabase_jwt_audience: str = "authenticated"
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Scheduler ---
    cron_secret: str = ""  # shared secret for scheduler-triggered endpoints

    # --- Fitbit (OAuth2) ---
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""

    # --- FatSecret (OAuth 1.0a + OAuth2 client credentials) ---
    fatsecret_consumer_key: str = ""
    fatsecret_consumer_secret: str = ""
    fatsecret_search_scope: str = "premier"

    # --- OAuth redirects ---
    allowed_redirect_origins: list[str] = [
        "http://localhost:5173",
        "https://groofit.lovable.app",
    ]

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
