from functools import lru_cache

from pydantic_settings import BaseSettings

from xero_client.models.common import DecimalPrecision


class Settings(BaseSettings):
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:4000/auth/xero/callback"
    scopes: list[str] = ["accounting.transactions", "accounting.contacts", "accounting.settings"]

    token_url: str = "https://identity.xero.com/connect/token"
    authorize_url: str = "https://login.xero.com/identity/connect/authorize"
    api_base_url: str = "https://api.xero.com/api.xro/2.0/"
    connections_url: str = "https://api.xero.com/connections"

    max_concurrent_requests: int | None = None
    decimal_precision: DecimalPrecision = DecimalPrecision.TWO
    request_timeout_seconds: float = 30.0

    max_rate_limit_retries: int = 3
    max_network_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 30.0
    minute_backoff_cap_seconds: float = 60.0
    app_minute_backoff_seconds: float = 5.0
    app_minute_backoff_cap_seconds: float = 120.0

    host: str = "127.0.0.1"
    port: int = 4000
    log_level: str = "INFO"

    model_config = {"env_prefix": "XERO_", "env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
