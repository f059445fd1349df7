"""Runtime configuration, read from the environment (and a local .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()


DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"


class Settings:
    """Snapshot of the environment taken when the app starts."""

    def __init__(self):
        self.backend = os.getenv("FAMILY_TREE_BACKEND", "memory").strip().lower()
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = os.getenv("SUPABASE_KEY", "")
        self.supabase_timeout = float(os.getenv("SUPABASE_TIMEOUT", "30"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
            if origin.strip()
        ]

    def validate(self) -> None:
        if self.backend not in ("memory", "supabase"):
            raise RuntimeError(f"Unknown FAMILY_TREE_BACKEND: '{self.backend}' (expected 'memory' or 'supabase')")
        if self.backend == "supabase" and not (self.supabase_url and self.supabase_key):
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set to use the supabase backend")


def get_settings() -> Settings:
    settings = Settings()
    settings.validate()
    return settings
