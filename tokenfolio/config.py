from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Process-wide settings, built once by the application factory."""

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    database_url: str  # Required, no default

    helio_api_key: Optional[str] = None
    helio_paylink_id: Optional[str] = None
    helio_api_base: str = "https://api.hel.io/v1"
    helio_checkout_base: str = "https://app.hel.io/pay"
    helio_timeout: float = 10.0
    helio_webhook_secret: Optional[str] = None

    admin_jwt_secret: Optional[str] = None

    default_currency: str = "USD"
    portfolio_templates: str = "modern,classic"

    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @property
    def template_names(self) -> set[str]:
        return {t.strip() for t in self.portfolio_templates.split(",") if t.strip()}

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            return cls()
        except ValidationError as exc:
            missing = [".".join(map(str, err["loc"])).upper() for err in exc.errors() if err["type"] == "missing"]
            if missing:
                raise RuntimeError(f"{', '.join(missing)} is not set. Check your .env file.") from exc
            raise
