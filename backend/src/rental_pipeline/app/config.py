"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from backend/ regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./rental_pipeline.db"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Google Calendar (video visits)
    google_calendar_access_token: str = ""
    google_calendar_id: str = "primary"
    calendar_timeout_seconds: float = 10.0
    visit_duration_minutes: int = 60

    # Pipeline rules
    max_active_requests: int = 3
    privileged_roles: str = "owner,seller,admin"
    global_roles: str = "admin,seller"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def privileged_roles_set(self) -> set[str]:
        """Roles allowed to counter, accept or reject offers."""
        return {r.strip() for r in self.privileged_roles.split(",") if r.strip()}

    @property
    def global_roles_set(self) -> set[str]:
        """Privileged roles that are not tied to property ownership."""
        return {r.strip() for r in self.global_roles.split(",") if r.strip()}


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
