import pytest

from chat_relay.utils.env import Settings, WaitPolicy, read_settings, validate_settings


ENV_VARS = [
    "BOTPRESS_WEBHOOK_ID",
    "BOTPRESS_BASE_URL",
    "UPSTREAM_TIMEOUT_SECONDS",
    "CACHE_TTL_SECONDS",
    "WEB3FORMS_ENDPOINT",
    "WEB3FORMS_ACCESS_KEY",
    "FRONTEND_URL",
    "APP_ENV",
    "LOG_LEVEL",
    "PORT",
    "RATE_LIMIT_MAX",
    "RATE_LIMIT_WINDOW_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    monkeypatch.setenv("BOTPRESS_WEBHOOK_ID", "abc123")

    settings = read_settings()
    validate_settings(settings)

    assert settings.botpress_url == "https://chat.botpress.cloud/abc123"
    assert settings.upstream_timeout == 30.0
    assert settings.cache_ttl == 300.0
    assert settings.port == 5001
    assert (settings.rate_limit_max, settings.rate_limit_window) == (100, 900.0)
    assert settings.is_development is False


def test_quotes_and_whitespace_are_stripped(monkeypatch):
    monkeypatch.setenv("BOTPRESS_WEBHOOK_ID", ' "abc123" ')
    monkeypatch.setenv("BOTPRESS_BASE_URL", "'https://bots.example.com/'")
    monkeypatch.setenv("APP_ENV", "Development")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = read_settings()

    assert settings.botpress_url == "https://bots.example.com/abc123"
    assert settings.is_development is True
    assert settings.log_level == "DEBUG"


def test_missing_webhook_id():
    with pytest.raises(RuntimeError, match="BOTPRESS_WEBHOOK_ID"):
        validate_settings(read_settings())


def test_invalid_number(monkeypatch):
    monkeypatch.setenv("UPSTREAM_TIMEOUT_SECONDS", "soon")

    with pytest.raises(RuntimeError, match="UPSTREAM_TIMEOUT_SECONDS"):
        read_settings()


def test_non_positive_ttl_rejected():
    with pytest.raises(RuntimeError, match="CACHE_TTL_SECONDS"):
        validate_settings(Settings(webhook_id="abc", cache_ttl=0))


def test_wait_policy_defaults():
    policy = WaitPolicy()

    assert (policy.max_attempts, policy.initial_delay, policy.multiplier) == (15, 0.5, 1.5)
    assert (policy.max_delay, policy.jitter_ratio, policy.max_unchanged_polls) == (3.0, 0.1, 3)


def test_rate_limit_from_env(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX", "20")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_SECONDS", "60")

    settings = read_settings()

    assert settings.rate_limit_max == 20
    assert settings.rate_limit_window == 60.0


def test_non_positive_rate_limit_rejected():
    with pytest.raises(RuntimeError, match="RATE_LIMIT_MAX"):
        validate_settings(Settings(webhook_id="abc", rate_limit_max=0))
