from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "data" / "issues.db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(default=f"sqlite:///{DEFAULT_SQLITE_PATH}")
    auth_secret_key: str = Field(default="change-me")
    auth_access_token_expire_minutes: int = Field(default=60 * 24)
    auth_bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    backend_cors_origins: str = Field(
        default="http://localhost:4200,http://127.0.0.1:4200,http://localhost:3000",
    )
    log_level: str = Field(default="INFO")
    issues_default_page_size: int = Field(default=20, ge=1)
    issues_max_page_size: int = Field(default=100, ge=1)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.backend_cors_origins.split(",") if origin.strip()]


settings = Settings()
