from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_api_key: str = ""  # set it in the .env file
    gemini_timeout_s: int = 300

    fast_model: str = "gemini-3-flash-preview"
    quality_model: str = "gemini-3-pro-preview"

    summary_temperature: float = 0.2

    max_pages: int = 40
    max_upload_mb: int = 20  # enforced by the HTTP layer, not the pipeline

    retry_max_attempts: int = 3
    retry_rate_limit_base_ms: int = 2000
    retry_overload_base_ms: int = 1000

    prove_it_max_sessions: int = 200  # oldest sessions are dropped past this

    enable_otel: bool = False


settings = Settings()
