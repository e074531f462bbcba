import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # core
    APP_NAME: str = Field(default="studygen")
    ENV: str = Field(default=os.getenv("APP_ENV", "dev"))
    DEBUG: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")

    # provider
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    REQUEST_TIMEOUT_S: float = Field(default=60.0, gt=0)

    # recovery
    MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RECOVERY_TTL_S: int = Field(default=3600, ge=1)
    RECOVERY_MAX_RECORDS: int = Field(default=50, ge=1)
    RECOVERY_STORE: str = Field(default="sqlite")  # sqlite | memory
    RECOVERY_DB_PATH: str = Field(default="data/recovery.sqlite")
    ENABLE_FALLBACK: bool = Field(default=True)

    # per-task defaults (model, tokens, temperature)
    GENERATION_CONFIG: str = Field(
        default=os.path.join(os.path.dirname(__file__), "generate", "config.yaml")
    )

    model_config = SettingsConfigDict(
        env_file=".env.dev",
        extra="ignore",
    )

    @property
    def app_name(self) -> str:
        return self.APP_NAME


settings = Settings()
