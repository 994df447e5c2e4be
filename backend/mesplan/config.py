from pydantic_settings import BaseSettings
from typing import List, Tuple
from pydantic import model_validator


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./mesplan.db"
    ENVIRONMENT: str = "development"
    AUTO_CREATE_TABLES: bool = True
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    DEBUG: bool = True
    APP_NAME: str = "MESPlan"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    ENABLE_REQUEST_ID: bool = True
    ENABLE_REQUEST_LOGGING: bool = True
    ENABLE_SECURITY_HEADERS: bool = True
    STRICT_TRANSPORT_SECURITY_SECONDS: int = 31536000
    READINESS_CHECK_DATABASE: bool = True
    SCHEDULING_LOG_LEVEL: str = ""

    # Machine calendar used when a machine carries no calendar of its own.
    DEFAULT_SHIFTS: str = "Shift-A@06:00-14:00,Shift-B@14:00-22:00"
    DEFAULT_WORK_DAYS: str = "0,1,2,3,4"
    SHIFT_BUCKET_START_HOUR: int = 6
    DEFAULT_HORIZON_HOURS: int = 168
    DEFAULT_GRANULARITY: str = "daily"

    SCHEDULE_LEASE_SECONDS: int = 30
    BULK_UPDATE_MAX_RETRIES: int = 3
    BULK_UPDATE_STRICT: bool = True
    CONFLICT_VALIDATION_WORKERS: int = 4

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def default_shift_list(self) -> List[Tuple[str, str, str]]:
        """Parse DEFAULT_SHIFTS into (name, start, end) tuples."""
        shifts = []
        for raw in self.DEFAULT_SHIFTS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            name, _, window = raw.partition("@")
            start, _, end = window.partition("-")
            shifts.append((name.strip(), start.strip(), end.strip()))
        return shifts

    @property
    def default_work_day_list(self) -> List[int]:
        return [int(d) for d in self.DEFAULT_WORK_DAYS.split(",") if d.strip()]

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"prod", "production"}

    @model_validator(mode="after")
    def validate_production_safety(self):
        if not self.is_production:
            return self

        if "sqlite" in self.DATABASE_URL.lower():
            raise ValueError("SQLite is not allowed when ENVIRONMENT is production.")

        if self.AUTO_CREATE_TABLES:
            raise ValueError("AUTO_CREATE_TABLES must be false in production; use Alembic migrations.")

        return self


settings = Settings()
