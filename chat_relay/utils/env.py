import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    webhook_id: str
    botpress_base_url: str = "https://chat.botpress.cloud"
    upstream_timeout: float = 30.0
    cache_ttl: float = 300.0
    web3forms_endpoint: str = "https://api.web3forms.com/submit"
    web3forms_access_key: str = ""
    frontend_url: str = "http://localhost:5173"
    app_env: str = "production"
    log_level: str = "INFO"
    port: int = 5001
    rate_limit_max: int = 100
    rate_limit_window: float = 900.0

    @property
    def botpress_url(self) -> str:
        return f"{self.botpress_base_url.rstrip('/')}/{self.webhook_id}"

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"


@dataclass(frozen=True)
class WaitPolicy:
    """Polling policy used while waiting for the bot's reply. Delays are in seconds."""

    max_attempts: int = 15
    initial_delay: float = 0.5
    multiplier: float = 1.5
    max_delay: float = 3.0
    jitter_ratio: float = 0.1
    max_unchanged_polls: int = 3


def _strip_quotes(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if len(value) >= 2 and (
        (value[0] == '"' and value[-1] == '"') or (value[0] == "'" and value[-1] == "'")
    ):
        return value[1:-1].strip()
    return value


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = _strip_quotes(os.getenv(name))
    return value if value else default


def _env_number(name: str, default: float, cast=float):
    raw = _env(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}") from None


def read_settings() -> Settings:
    return Settings(
        webhook_id=_env("BOTPRESS_WEBHOOK_ID", ""),
        botpress_base_url=_env("BOTPRESS_BASE_URL", "https://chat.botpress.cloud"),
        upstream_timeout=_env_number("UPSTREAM_TIMEOUT_SECONDS", 30.0),
        cache_ttl=_env_number("CACHE_TTL_SECONDS", 300.0),
        web3forms_endpoint=_env("WEB3FORMS_ENDPOINT", "https://api.web3forms.com/submit"),
        web3forms_access_key=_env("WEB3FORMS_ACCESS_KEY", ""),
        frontend_url=_env("FRONTEND_URL", "http://localhost:5173"),
        app_env=_env("APP_ENV", "production"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        port=_env_number("PORT", 5001, cast=int),
        rate_limit_max=_env_number("RATE_LIMIT_MAX", 100, cast=int),
        rate_limit_window=_env_number("RATE_LIMIT_WINDOW_SECONDS", 900.0),
    )


def validate_settings(settings: Settings) -> None:
    missing = [
        name
        for name, value in [
            ("BOTPRESS_WEBHOOK_ID", settings.webhook_id),
        ]
        if not value
    ]
    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    if settings.upstream_timeout <= 0:
        raise RuntimeError("UPSTREAM_TIMEOUT_SECONDS must be positive")
    if settings.cache_ttl <= 0:
        raise RuntimeError("CACHE_TTL_SECONDS must be positive")
    if settings.rate_limit_max <= 0:
        raise RuntimeError("RATE_LIMIT_MAX must be positive")
    if settings.rate_limit_window <= 0:
        raise RuntimeError("RATE_LIMIT_WINDOW_SECONDS must be positive")
