# Settings for the catalog search engine, the Supabase store and the geocoder.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Crag Search"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Search, filter and rank bouldering areas, sectors and problems by name, grade, style and distance."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level name")
    LOG_JSON: Optional[bool] = Field(None, description="Render logs as JSON lines; unset means JSON outside development")

    # --- Remote catalog store (Supabase / PostgREST) ---
    SUPABASE_URL: Optional[str] = Field(None, description="Base URL of the Supabase project, e.g. https://xyz.supabase.co")
    SUPABASE_ANON_KEY: Optional[str] = Field(None, description="Anonymous API key sent as apikey/Bearer")
    USE_IN_MEMORY_STORE: bool = Field(False, description="Serve the catalog from the in-memory fixture store")

    STORE_TIMEOUT: int = 8 # seconds
    STORE_MAX_RETRIES: int = 2
    STORE_INITIAL_BACKOFF: float = 0.5 # seconds

    # --- Location lookup (Mapbox forward geocoding) ---
    MAPBOX_TOKEN: Optional[str] = Field(None, description="Mapbox Geocoding API Token")
    MAPBOX_TIMEOUT: int = 8 # seconds
    MAPBOX_MAX_RETRIES: int = 2
    MAPBOX_INITIAL_BACKOFF: float = 1.0 # seconds

    # --- Search behaviour ---
    SEARCH_DEBOUNCE_MS: int = Field(300, description="Quiet period between the last text change and dispatch")
    MIN_QUERY_LENGTH: int = 2
    # Problems are the densest leaf level, so they get the loosest cap
    AREA_RESULT_LIMIT: int = 20
    SECTOR_RESULT_LIMIT: int = 20
    PROBLEM_RESULT_LIMIT: int = 100

    # --- Map framing ---
    FALLBACK_CENTER_LAT: float = 37.5
    FALLBACK_CENTER_LNG: float = -122.0
    DEFAULT_SPAN: float = 0.02
    REGION_PADDING: float = 0.005

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
