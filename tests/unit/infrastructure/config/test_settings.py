import os
from decimal import Decimal

import pytest

from devrelbot.domain.errors import ConfigurationError
from devrelbot.infrastructure.config import settings as config


def write_yaml(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_cooldown_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="cooldown_ms"):
        config.build_resilience_settings()


def test_defaults_with_only_cooldown():
    config.set_config_for_testing({"circuit_breaker.cooldown_ms": 30_000})

    settings = config.build_resilience_settings()

    assert settings.circuit_breaker.cooldown_ms == 30_000
    assert settings.circuit_breaker.failure_threshold == 5
    assert settings.rate_limits["generate-summary"].max_requests == 5
    assert settings.throttle.service_limits["ai-completion"].max_requests == 10
    assert settings.throttle.max_queue_depth == 50
    assert settings.retry.max_attempts == 3
    assert settings.retry.attempt_timeout_ms == 30_000
    assert settings.retry.deadline_ms is None
    assert settings.budget.daily_limit == Decimal("100")
    assert settings.budget.alert_thresholds == (75, 90, 100)


def test_yaml_values_are_loaded(tmp_path, monkeypatch):
    path = write_yaml(tmp_path, """
circuit_breaker:
  cooldown_ms: 45000
  failure_threshold: 3
  pause_on_open: [ai-completion]
rate_limits:
  generate-summary: {max_requests: 2, window_ms: 30000}
  custom-action: {max_requests: 7}
throttle:
  services:
    docs: {max_requests: 5}
budget:
  daily_limit: 12.50
  alert_thresholds: [50, 100]
""")
    monkeypatch.setenv("DEVRELBOT_CONFIG", str(path))

    settings = config.build_resilience_settings()

    assert settings.circuit_breaker.cooldown_ms == 45_000
    assert settings.circuit_breaker.failure_threshold == 3
    assert settings.circuit_breaker.pause_on_open == ["ai-completion"]
    assert settings.rate_limits["generate-summary"].window_ms == 30_000
    assert settings.rate_limits["custom-action"].window_ms == 60_000
    assert settings.rate_limits["discord-post"].max_requests == 10
    assert settings.throttle.service_limits["docs"].max_requests == 5
    assert settings.budget.daily_limit == Decimal("12.5")
    assert settings.budget.alert_thresholds == (50, 100)


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    path = write_yaml(tmp_path, "circuit_breaker:\n  cooldown_ms: 45000\n")
    monkeypatch.setenv("DEVRELBOT_CONFIG", str(path))
    monkeypatch.setenv("DEVRELBOT_CIRCUIT_BREAKER_COOLDOWN_MS", "5000")
    monkeypatch.setenv("DEVRELBOT_BUDGET_DAILY_LIMIT", "25.5")

    settings = config.build_resilience_settings()

    assert settings.circuit_breaker.cooldown_ms == 5000
    assert settings.budget.daily_limit == Decimal("25.5")


def test_test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("DEVRELBOT_RETRY_MAX_ATTEMPTS", "9")
    config.set_config_for_testing({"retry.max_attempts": 2, "circuit_breaker.cooldown_ms": 1000})

    assert config.build_resilience_settings().retry.max_attempts == 2


def test_attempt_timeout_from_environment(monkeypatch):
    monkeypatch.setenv("DEVRELBOT_RETRY_ATTEMPT_TIMEOUT_MS", "5000")
    config.set_config_for_testing({"circuit_breaker.cooldown_ms": 1000})

    assert config.build_resilience_settings().retry.attempt_timeout_ms == 5000


def test_invalid_values_raise(monkeypatch):
    config.set_config_for_testing({"circuit_breaker.cooldown_ms": "soon"})

    with pytest.raises(ConfigurationError):
        config.build_resilience_settings()


def test_invalid_rule_raises():
    config.set_config_for_testing({
        "circuit_breaker.cooldown_ms": 1000,
        "rate_limits": {"translate": {"window_ms": 1000}},
    })

    with pytest.raises(ConfigurationError, match="max_requests"):
        config.build_resilience_settings()


def test_malformed_yaml_raises(tmp_path):
    path = write_yaml(tmp_path, "circuit_breaker: [unclosed\n")

    with pytest.raises(ConfigurationError):
        config.load_configuration(config_file=path)


def test_get_config_dotted_lookup(tmp_path):
    path = write_yaml(tmp_path, "logging:\n  level: DEBUG\n")
    config.load_configuration(config_file=path)

    assert config.get_config("logging.level") == "DEBUG"
    assert config.get_config("logging.file", "fallback") == "fallback"


def test_dotenv_file_is_loaded(tmp_path):
    (tmp_path / ".env").write_text("DEVRELBOT_AI_MODEL=gpt-4.1-mini\n", encoding="utf-8")
    config.set_config_for_testing({"circuit_breaker.cooldown_ms": 1000})

    try:
        settings = config.build_resilience_settings()
    finally:
        os.environ.pop("DEVRELBOT_AI_MODEL", None)

    assert settings.ai_model == "gpt-4.1-mini"


def test_openai_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert config.get_openai_api_key() == "sk-test"
