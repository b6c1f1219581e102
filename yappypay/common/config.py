"""Central environment-driven settings for the Yappy integration.

Loaded once per process. Behavior is controlled by environment variables (see
`.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class YappySettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "yappy-terminal"
    log_level: str = "INFO"
    yappy_base_url: str = "https://api.yappy.test"
    http_timeout_seconds: float = 15.0
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 24
    storage_dsn: str = "sqlite:///yappy_storage.db"
    storage_key_file: str = "yappy_storage.key"
    config_server_url: str | None = None
    fallback_config_json: str | None = None
    fallback_username: str = "admin"
    api_key: str | None = None
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    tracing_enabled: bool = False
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = YappySettings()
