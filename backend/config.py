from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Habit Phases"
    DATABASE_URL: str = "sqlite:///data/habits.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:8050",
        "http://localhost:8001",
        "https://localhost:8050",
        "https://127.0.0.1:8050",
    ]
    LOG_LEVEL: str = "INFO"
    DEFAULT_TIMEZONE: str = "America/Edmonton"
    DEFAULT_RESET_HOUR: int = 2
    DEFAULT_RESET_MINUTE: int = 0
    DEFAULT_NOTIFICATION_CAP_PER_DAY: int = 8
    DEFAULT_NOTIFICATION_COOLDOWN_MINUTES: int = 45
    DEFAULT_PHASE_MODE: str = "auto_solar"  # auto_solar | manual
    SNOOZE_OPTIONS_MINUTES: list[int] = [5, 15, 60]
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_CSP: str = (
        "default-src 'self'; "
        "img-src 'self' data:; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "frame-ancestors 'none'; "
        "base-uri 'self';"
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_configuration(self) -> None:
        errors: list[str] = []
        if not 0 <= self.DEFAULT_RESET_HOUR <= 23:
            errors.append("DEFAULT_RESET_HOUR must be between 0 and 23")
        if not 0 <= self.DEFAULT_RESET_MINUTE <= 59:
            errors.append("DEFAULT_RESET_MINUTE must be between 0 and 59")
        if self.DEFAULT_NOTIFICATION_CAP_PER_DAY < 0:
            errors.append("DEFAULT_NOTIFICATION_CAP_PER_DAY must not be negative")
        if self.DEFAULT_NOTIFICATION_COOLDOWN_MINUTES < 0:
            errors.append("DEFAULT_NOTIFICATION_COOLDOWN_MINUTES must not be negative")
        if self.DEFAULT_PHASE_MODE not in {"auto_solar", "manual"}:
            errors.append("DEFAULT_PHASE_MODE must be auto_solar or manual")
        try:
            ZoneInfo(self.DEFAULT_TIMEZONE)
        except Exception:
            errors.append(f"DEFAULT_TIMEZONE {self.DEFAULT_TIMEZONE!r} is not a known IANA timezone")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
