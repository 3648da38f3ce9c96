from __future__ import annotations

import pytest

from activity_digest.config import load_settings, parse_settings
from activity_digest.core.errors import ConfigurationError
from activity_digest.core.resilience import API_CIRCUIT_BREAKER, STANDARD


def test_defaults_without_configuration_file():
    settings = load_settings()

    assert settings.source_path is None
    assert settings.gitlab.base_url == "https://gitlab.com"
    assert not settings.gitlab.is_complete
    assert settings.resilience.retry == STANDARD
    assert settings.resilience.circuit_breaker == API_CIRCUIT_BREAKER
    assert settings.timezone == "UTC"


def test_strict_mode_requires_a_file():
    with pytest.raises(ConfigurationError):
        load_settings(strict=True)


def test_load_explicit_file(config_file):
    settings = load_settings(config_file)

    assert settings.source_path == config_file
    assert settings.gitlab.is_complete
    assert settings.gitlab.project_ids == ("42",)
    assert settings.resilience.retry.max_attempts == 2


def test_secrets_directory_is_discovered(tmp_path):
    secrets_dir = tmp_path / ".secrets"
    secrets_dir.mkdir()
    (secrets_dir / "secret.toml").write_text('[gitlab]\naccess_token = "from-secrets"\n', encoding="utf-8")

    assert load_settings().gitlab.access_token == "from-secrets"


def test_env_var_points_to_configuration(monkeypatch, config_file):
    monkeypatch.setenv("ACTIVITY_DIGEST_CONFIG", str(config_file))
    assert load_settings().source_path == config_file


def test_gitlab_environment_overrides_file(monkeypatch, config_file):
    monkeypatch.setenv("GITLAB_ACCESS_TOKEN", "env-token")
    monkeypatch.setenv("GITLAB_PROJECT_IDS", "1, 2,3")
    monkeypatch.setenv("GITLAB_ENABLED", "false")

    settings = load_settings(config_file)

    assert settings.gitlab.access_token == "env-token"
    assert settings.gitlab.project_ids == ("1", "2", "3")
    assert settings.gitlab.enabled is False


def test_resilience_overrides():
    settings = parse_settings(
        {
            "retry": {"preset": "conservative", "max_attempts": 7},
            "circuit_breaker": {"failure_threshold": 4, "recovery_timeout": 15},
        },
        environ={},
    )

    assert settings.resilience.retry.max_attempts == 7
    assert settings.resilience.retry.base_delay == 2.0
    assert settings.resilience.circuit_breaker.failure_threshold == 4
    assert settings.resilience.circuit_breaker.recovery_timeout == 15.0


def test_circuit_breaker_can_be_disabled():
    settings = parse_settings({"circuit_breaker": {"enabled": False}}, environ={})
    assert settings.resilience.circuit_breaker is None


@pytest.mark.parametrize(
    "raw",
    [
        {"retry": {"preset": "reckless"}},
        {"retry": {"max_attempts": "many"}},
        {"retry": {"max_attempts": 0}},
        {"gitlab": {"enabled": "sometimes"}},
    ],
)
def test_invalid_values_raise_configuration_error(raw):
    with pytest.raises(ConfigurationError):
        parse_settings(raw, environ={})


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path / "missing.toml")


def test_malformed_toml(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[gitlab\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(path)
