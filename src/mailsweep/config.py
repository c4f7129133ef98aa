from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Azure OpenAI (upstream for the AI proxy)
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_deployment: str = "gpt-4"
    azure_api_version: str = "2024-02-15-preview"

    # AI proxy server
    proxy_host: str = "127.0.0.1"
    proxy_port: int = 3000
    ai_proxy_url: str = "http://localhost:3000"

    # Gmail REST API
    gmail_api_base: str = "https://gmail.googleapis.com/gmail/v1"
    userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    http_timeout_seconds: float = 30.0
    list_max_results: int = 100
    preview_limit: int = 50
    detail_chunk_size: int = 10
    suggestion_sample_size: int = 5

    # Sentry error tracking
    sentry_dsn: str = ""
    sentry_environment: str = "production"

    log_level: str = "INFO"
    data_dir: str = "~/.mailsweep"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def has_azure_openai(self) -> bool:
        return bool(self.azure_openai_endpoint and self.azure_openai_api_key)

    @property
    def has_sentry(self) -> bool:
        return bool(self.sentry_dsn)


settings = Settings()
