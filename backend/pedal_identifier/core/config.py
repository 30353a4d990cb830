from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central settings object.
    Environment variables win; locally you can use backend/.env.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Gemini
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_TIMEOUT_SECONDS: float = 60.0
    GEMINI_TEMPERATURE: float = 0.2

    # Uploads (camera frames arrive as data URIs, so the same ceiling applies)
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Logging
    LOG_LEVEL: str = "INFO"

    # Versioning
    APP_VERSION: str = "0.1.0"
    BUILD_ID: str = "dev"


# other modules import this
settings = Settings()
