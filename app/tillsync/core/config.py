from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "TILLSYNC"
    DATABASE_URL: str = "sqlite+pysqlite:///./tillsync.db"
    LEDGER_BUSY_TIMEOUT_MS: int = 5000
    EXTERNAL_API_KEY: str = ""
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = True
    ASSETS_DIR: str = "./static_assets"
    ASSETS_VERSION: int = 1
    SYNC_MAX_PAYLOAD_LINES: int = 500

settings = Settings()
