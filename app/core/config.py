from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'stock_user'
    POSTGRES_PASSWORD: str = 'stock_pass'
    POSTGRES_DB: str = 'stock_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432

    # Analytics engine
    ANALYTICS_CACHE_TTL_SECONDS: int = 600  # 10 minutes
    ANALYTICS_WINDOW_MONTHS: int = 6
    ANALYTICS_MAX_WINDOW_MONTHS: int = 24
    ANALYTICS_KPI_PRECISION: int = 2
    ANALYTICS_LOOKBACK_DAYS: int = 60  # Trailing windows used by the delta engine

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def async_database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("ANALYTICS_WINDOW_MONTHS", "ANALYTICS_MAX_WINDOW_MONTHS")
    @classmethod
    def validate_window(cls, v):
        if v < 1:
            raise ValueError("Analytics window must cover at least one month")
        return v

settings = Settings()
