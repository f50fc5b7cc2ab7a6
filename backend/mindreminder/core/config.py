from pydantic_settings import BaseSettings
from typing import List, Optional, Any
from pydantic import field_validator
import json


class Settings(BaseSettings):
    # Branding
    app_name: str = "MindReMinder"

    # Security
    jwt_secret: str = "mindreminder-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 1 week
    cookie_domain: Optional[str] = None  # None allows all domains for development
    cookie_secure: bool = False  # False for HTTP development
    cookie_samesite: str = "lax"
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    database_url: str = "sqlite:///./mindreminder.db"

    # Day boundary for habit completions when a user has no timezone configured
    default_timezone: str = "UTC"

    # How many days before today a completion may be backfilled
    completion_backfill_days: int = 365

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v: Any) -> Any:
        """Allow CORS_ORIGINS to be provided as JSON array or comma-separated string."""
        if isinstance(v, str):
            sv = v.strip()
            if not sv:
                return []
            if sv.startswith("["):
                try:
                    parsed = json.loads(sv)
                    if isinstance(parsed, list):
                        return parsed
                except ValueError:
                    pass
            # Fallback: comma-separated
            return [s.strip() for s in sv.split(",") if s.strip()]
        return v


settings = Settings()
