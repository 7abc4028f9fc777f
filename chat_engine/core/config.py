from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Chat Command Engine"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "UTC"

    DATA_DIR: str = "./data"
    HISTORY_LIMIT: int = 50

    EXPORT_ENDPOINT: str | None = None
    EXPORT_API_KEY: str | None = None
    EXPORT_TIMEOUT_SECONDS: float = 10.0


settings = Settings()
