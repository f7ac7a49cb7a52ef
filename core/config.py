import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator


class ConfigurationError(RuntimeError):
    pass


class Settings(BaseModel):
    """
    Process-wide configuration, loaded once at startup and passed explicitly.
    """

    # hosted database / auth
    supabase_url: str
    supabase_service_role_key: str
    database_url: str

    # Razorpay (缺少金鑰時不要 crash，每個請求回 UpstreamUnavailable)
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    razorpay_api_url: str = "https://api.razorpay.com/v1"

    gateway_timeout: float = 10.0
    gateway_max_retries: int = 2
    gateway_retry_delay: float = 0.5

    redis_url: str = "redis://localhost:6379/0"
    idempotency_ttl_seconds: int = 24 * 60 * 60

    cors_origins: List[str] = ["*"]

    service_name: str = "billpay-api"
    otel_enabled: bool = True
    otel_endpoint: str = "http://localhost:4317"
    db_echo: bool = False
    log_level: str = "INFO"

    @field_validator("supabase_url", "supabase_service_role_key", "database_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("supabase_url", "razorpay_api_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def gateway_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)


# env name -> Settings field
ENV_VARS = {
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_SERVICE_ROLE_KEY": "supabase_service_role_key",
    "DATABASE_URL": "database_url",
    "RAZORPAY_KEY_ID": "razorpay_key_id",
    "RAZORPAY_KEY_SECRET": "razorpay_key_secret",
    "RAZORPAY_WEBHOOK_SECRET": "razorpay_webhook_secret",
    "RAZORPAY_API_URL": "razorpay_api_url",
    "GATEWAY_TIMEOUT": "gateway_timeout",
    "GATEWAY_MAX_RETRIES": "gateway_max_retries",
    "GATEWAY_RETRY_DELAY": "gateway_retry_delay",
    "REDIS_URL": "redis_url",
    "IDEMPOTENCY_TTL_SECONDS": "idempotency_ttl_seconds",
    "CORS_ORIGINS": "cors_origins",
    "SERVICE_NAME": "service_name",
    "OTEL_ENABLED": "otel_enabled",
    "OTEL_EXPORTER_OTLP_ENDPOINT": "otel_endpoint",
    "DB_ECHO": "db_echo",
    "LOG_LEVEL": "log_level",
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables, failing fast on missing values.
    """
    if environ is None:
        environ = os.environ

    values = {}
    for env_name, field_name in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        values[field_name] = raw

    try:
        return Settings(**values)
    except ValidationError as err:
        reverse = {field: env for env, field in ENV_VARS.items()}
        bad = sorted(
            reverse.get(str(error["loc"][0]), str(error["loc"][0]))
            for error in err.errors()
        )
        raise ConfigurationError(
            f"Invalid or missing configuration: {', '.join(bad)}"
        ) from err
